"""Shared constants for db-manager."""

SOCKET_TIMEOUT_SECONDS = 30.0
SOCKET_READ_SIZE = 65536
USER_AGENT = "db-manager/1.0"

DOCKER_API_PREFIX = "/v1.41"
PODMAN_API_PREFIX = "/v4.0.0/libpod"

SOCKET_ENV_VARS = ("DB_MANAGER_SOCKET", "DOCKER_SOCKET", "PODMAN_SOCKET")
DEFAULT_SOCKET_PATHS = (
    "/var/run/docker.sock",
    "/run/user/{uid}/podman/podman.sock",
    "/run/podman/podman.sock",
    "/var/run/podman/podman.sock",
)

LABEL_NAMESPACE = "db-manager"
MANAGED_MARKER = "true"

DEFAULT_UID = 1000
DEFAULT_GID = 1000
DEFAULT_IDENTITY_USER = "default"
IDENTITY_TIMEOUT_SECONDS = 30.0

STORAGE_DIR_MODE = "755"
FILESYSTEM_ROOT = "/"

MIN_RUNTIME_VERSIONS = {
    "docker": "20.10",
    "podman": "4.0.0",
}

DEFAULT_CONFIG_FILE = ".db-manager.yml"
