"""Validation of deployment requests before they reach the runtime."""

import os
import re

from dbmanager.errors import ValidationError
from dbmanager.models import DeploymentRequest, EngineType


class ValidationService:
    """Rejects requests the orchestrator should never see."""

    MAX_NAME_LENGTH = 50
    MIN_PORT = 1024
    MAX_PORT = 65535

    _NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_-]*$")
    _TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
    _ENV_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

    def validate_name(self, name: str):
        if not name:
            raise ValidationError("Database name is required.")
        if not self._NAME_PATTERN.fullmatch(name):
            raise ValidationError(
                "Database name must start with a letter and contain only letters, numbers, "
                "hyphens, and underscores."
            )
        if len(name) > self.MAX_NAME_LENGTH:
            raise ValidationError(
                f"Database name must be {self.MAX_NAME_LENGTH} characters or less."
            )

    def validate_port(self, port: int):
        if not isinstance(port, int) or isinstance(port, bool):
            raise ValidationError(f"Port must be an integer, got {port!r}.")
        if port < self.MIN_PORT or port > self.MAX_PORT:
            raise ValidationError(f"Port must be between {self.MIN_PORT} and {self.MAX_PORT}.")

    def validate_version(self, version: str):
        if not version or not self._TAG_PATTERN.fullmatch(version):
            raise ValidationError(f"Invalid image version/tag: {version!r}")

    def validate_storage(self, request: DeploymentRequest):
        if not request.persistent_storage:
            return
        if not request.storage_path:
            raise ValidationError("Persistent storage requires a storage path.")
        if not os.path.isabs(request.storage_path):
            raise ValidationError(
                f"Storage path must be absolute: {request.storage_path}"
            )
        if os.path.normpath(request.storage_path) == os.sep:
            raise ValidationError("Storage path cannot be the filesystem root.")

    def validate_deployment(self, request: DeploymentRequest):
        try:
            EngineType(request.engine)
        except ValueError as exc:
            supported = ", ".join(engine.value for engine in EngineType)
            raise ValidationError(
                f"Unsupported database type: {request.engine}. Supported types: {supported}"
            ) from exc

        self.validate_name(request.name)
        self.validate_version(request.version)
        self.validate_port(request.port)

        if not request.root_password:
            raise ValidationError("Root password is required.")
        if request.password and not request.username:
            raise ValidationError("A user password was given without a username.")

        for key in request.environment:
            if not self._ENV_KEY_PATTERN.fullmatch(key):
                raise ValidationError(f"Invalid environment variable name: {key!r}")

        self.validate_storage(request)
