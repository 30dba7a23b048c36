"""Filesystem helpers for db-manager."""

import logging
import os
import re
import sys
from typing import List, Optional, Union

from rich.console import Console

from dbmanager.constants import FILESYSTEM_ROOT
from dbmanager.errors import DirectoryExistsError, FileSystemError, PathTraversalError
from dbmanager.models import DirectoryCreation, DirectoryListing

_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")
_MODE_PATTERN = re.compile(r"^[0-7]{3,4}$")


class FileSystemService:
    """Encapsulates directory listing and creation on the host."""

    def __init__(self, logger: logging.Logger, console: Console, root: str = FILESYSTEM_ROOT):
        self.logger = logger
        self.console = console
        self.root = os.path.abspath(root)

    def resolve_safe(self, path: str) -> str:
        if not path:
            raise PathTraversalError("Invalid path: empty path.")

        resolved = os.path.abspath(os.path.normpath(path))
        if os.path.commonpath([self.root, resolved]) != self.root:
            raise PathTraversalError(f"Invalid path: {path} is outside of {self.root}")
        return resolved

    def path_exists(self, path: str) -> bool:
        return os.path.exists(self.resolve_safe(path))

    def list_directories(self, path: str = "/") -> DirectoryListing:
        safe_path = self.resolve_safe(path)
        if not os.path.exists(safe_path):
            raise FileSystemError(f"Path not found: {safe_path}")
        if not os.path.isdir(safe_path):
            raise FileSystemError(f"Path is not a directory: {safe_path}")

        try:
            with os.scandir(safe_path) as entries:
                directories = sorted(
                    entry.name for entry in entries if entry.is_dir(follow_symlinks=False)
                )
        except OSError as exc:
            raise FileSystemError(f"Could not list {safe_path}: {exc}") from exc

        parent_path = os.path.dirname(safe_path) if safe_path != self.root else None
        return DirectoryListing(
            current_path=safe_path,
            parent_path=parent_path,
            directories=directories,
        )

    def create_directory(
        self,
        parent: str,
        name: str,
        mode: Optional[str] = None,
        owner: Optional[Union[int, str]] = None,
        group: Optional[Union[int, str]] = None,
    ) -> DirectoryCreation:
        safe_parent = self.resolve_safe(parent)

        if not _NAME_PATTERN.match(name or "") or name in {".", ".."}:
            raise FileSystemError(
                "Invalid directory name. Only letters, numbers, dots, underscores, "
                "and hyphens are allowed."
            )
        if mode is not None and not _MODE_PATTERN.match(str(mode)):
            raise FileSystemError("Invalid mode. Must be octal notation (e.g., 755, 644, 0755)")

        if not os.path.exists(safe_parent):
            raise FileSystemError(f"Parent path not found: {safe_parent}")
        if not os.path.isdir(safe_parent):
            raise FileSystemError(f"Parent path is not a directory: {safe_parent}")

        new_dir = os.path.join(safe_parent, name)
        try:
            os.mkdir(new_dir)
        except FileExistsError as exc:
            raise DirectoryExistsError(f"Directory already exists: {new_dir}") from exc
        except OSError as exc:
            raise FileSystemError(f"Could not create {new_dir}: {exc}") from exc
        self.logger.info("Created directory: %s", new_dir)

        operations: List[str] = []
        warnings: List[str] = []

        if mode is not None:
            warning = self.set_permissions(new_dir, int(str(mode), 8))
            if warning:
                warnings.append(warning)
            else:
                operations.append(f"permissions set to {mode}")

        if owner is not None or group is not None:
            warning = self.set_ownership(new_dir, owner, group)
            if warning:
                warnings.append(warning)
            else:
                owner_desc = f"{owner if owner is not None else ''}:{group if group is not None else ''}"
                operations.append(f"ownership set to {owner_desc}")

        return DirectoryCreation(path=new_dir, operations=operations, warnings=warnings)

    def set_permissions(self, path: str, mode: int) -> Optional[str]:
        if sys.platform == "win32":
            return None

        try:
            os.chmod(path, mode)
        except OSError as exc:
            message = f"Could not set permissions on {path}: {exc}"
            self.logger.warning(message)
            return message
        return None

    def set_ownership(
        self,
        path: str,
        owner: Optional[Union[int, str]],
        group: Optional[Union[int, str]],
    ) -> Optional[str]:
        if sys.platform == "win32":
            return None

        try:
            uid = int(owner) if owner is not None else -1
            gid = int(group) if group is not None else -1
            os.chown(path, uid, gid)
        except (OSError, ValueError) as exc:
            message = f"Could not set ownership on {path}: {exc}"
            self.logger.warning(message)
            self.console.print(f"[yellow]Warning:[/yellow] {message}")
            return message
        return None
