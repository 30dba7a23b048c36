"""Locating the Docker or Podman socket to talk to."""

import os
import stat
from typing import Callable, List, Mapping, Optional

from dbmanager.constants import DEFAULT_SOCKET_PATHS, SOCKET_ENV_VARS
from dbmanager.errors import DbManagerError
from dbmanager.errors_catalog import actionable_error
from dbmanager.models import RuntimeEndpoint


def _is_socket(path: str) -> bool:
    try:
        return stat.S_ISSOCK(os.stat(path).st_mode)
    except OSError:
        return False


class SocketDiscovery:
    """Resolves an endpoint from an explicit path, the environment or well-known paths."""

    def __init__(
        self,
        logger,
        environ: Optional[Mapping[str, str]] = None,
        is_socket: Callable[[str], bool] = _is_socket,
        uid: Optional[int] = None,
    ):
        self.logger = logger
        self.environ = os.environ if environ is None else environ
        self.is_socket = is_socket
        if uid is None:
            uid = os.getuid() if hasattr(os, "getuid") else 0
        self.uid = uid

    def candidates(self) -> List[str]:
        return [path.format(uid=self.uid) for path in DEFAULT_SOCKET_PATHS]

    def find_socket(self) -> Optional[str]:
        for path in self.candidates():
            if self.is_socket(path):
                self.logger.info("Found Docker/Podman socket at: %s", path)
                return path
        return None

    def resolve(self, explicit_path: Optional[str] = None, dialect: Optional[str] = None) -> RuntimeEndpoint:
        socket_path = explicit_path
        if not socket_path:
            for name in SOCKET_ENV_VARS:
                if self.environ.get(name):
                    socket_path = self.environ[name]
                    self.logger.debug("Using socket from %s: %s", name, socket_path)
                    break

        if not socket_path:
            socket_path = self.find_socket()

        if not socket_path:
            raise DbManagerError(
                actionable_error("socket_not_found", paths=", ".join(self.candidates()))
            )

        endpoint = RuntimeEndpoint.from_path(socket_path, dialect=dialect)
        self.logger.info(
            "Using %s socket: %s", endpoint.dialect.value, endpoint.socket_path
        )
        return endpoint
