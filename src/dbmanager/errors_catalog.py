"""Actionable error catalog for db-manager."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "socket_not_found": {
        "what": "No Docker or Podman socket found. Checked: {paths}",
        "next": (
            "Start the runtime (`sudo systemctl start docker` or "
            "`systemctl --user enable --now podman.socket`) or pass `--socket`."
        ),
    },
    "gateway_unreachable": {
        "what": "Container runtime is unreachable at {path}: {reason}",
        "next": "Check that the runtime service is running and that you may access the socket.",
    },
    "container_name_conflict": {
        "what": "A container named '{name}' already exists ({container_id}).",
        "next": "Use `retry-start` to start it, or remove it before deploying again.",
    },
    "created_not_started": {
        "what": "Container {container_id} was created but could not be started: {reason}",
        "next": "Run `db-manager retry-start {container_id}` once the cause is fixed.",
    },
    "storage_failed": {
        "what": "Could not prepare storage directory {path}: {reason}",
        "next": "Create the directory manually or choose a writable parent path.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
