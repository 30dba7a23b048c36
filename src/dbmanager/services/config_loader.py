"""Configuration loader for db-manager."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from dbmanager.errors import DbManagerError


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults."""

    SUPPORTED_KEYS = {
        "socket_path",
        "dialect",
        "label_namespace",
        "filesystem_root",
        "storage_mode",
        "default_uid",
        "default_gid",
        "identity_timeout",
        "verbose",
        "log_file",
        "templates",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise DbManagerError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise DbManagerError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise DbManagerError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise DbManagerError(f"Unknown configuration keys: {unknown_list}")

        dialect = parsed.get("dialect")
        if dialect is not None and dialect not in {"docker", "podman"}:
            raise DbManagerError(f"Invalid dialect '{dialect}'. Use 'docker' or 'podman'.")

        templates = parsed.get("templates")
        if templates is not None and not isinstance(templates, dict):
            raise DbManagerError("'templates' must be a mapping of engine name to overrides.")

        return parsed
