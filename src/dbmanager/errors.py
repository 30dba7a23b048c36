"""Domain errors for db-manager."""

from typing import Any, Optional


class DbManagerError(RuntimeError):
    """Raised when an operation cannot continue safely."""


class TransportError(DbManagerError):
    """The runtime socket could not be reached or the exchange broke off."""


class TransportTimeoutError(TransportError):
    """The runtime socket stayed idle longer than the transport timeout."""


class DecodeError(DbManagerError):
    """The runtime answered with bytes that are not an HTTP/1.x response."""


class DialectError(DbManagerError):
    """An operation cannot be expressed in the active runtime dialect."""


class ValidationError(DbManagerError):
    """A deployment request or option failed validation."""


class FileSystemError(DbManagerError):
    """A filesystem collaborator operation failed."""


class PathTraversalError(FileSystemError):
    """A path resolved outside of the allowed filesystem root."""


class DirectoryExistsError(FileSystemError):
    """The directory to create is already present."""


class CommandError(DbManagerError):
    """An external command failed, timed out or could not be executed."""


class CommandNotFoundError(CommandError):
    """The executable of an external command is not installed."""


class RuntimeApiError(DbManagerError):
    """The runtime answered with a non-success HTTP status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"Runtime API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class OrchestrationError(DbManagerError):
    """A deployment failed at a named stage.

    `run` is the failed `DeploymentRun` when the error comes out of a
    deployment; a failed `retry_start` has no run and carries only the
    container id.
    """

    def __init__(
        self,
        stage: str,
        message: str,
        container_id: Optional[str] = None,
        run: Optional[Any] = None,
    ):
        super().__init__(f"Deployment failed at stage '{stage}': {message}")
        self.stage = stage
        self.message = message
        self.container_id = container_id
        self.run = run

    @property
    def created_but_not_started(self) -> bool:
        if self.run is not None:
            return self.run.created_but_not_started
        return self.stage == "start" and bool(self.container_id)
