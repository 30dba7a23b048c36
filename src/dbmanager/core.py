import logging
import re
from typing import Any, Dict, List, Optional

from packaging import version
from rich.console import Console

from .constants import (
    DEFAULT_GID,
    DEFAULT_UID,
    FILESYSTEM_ROOT,
    IDENTITY_TIMEOUT_SECONDS,
    MIN_RUNTIME_VERSIONS,
    STORAGE_DIR_MODE,
)
from .errors import DbManagerError
from .labels import ManagedLabels
from .models import (
    ContainerRecord,
    DeploymentRequest,
    DeploymentResult,
    DirectoryCreation,
    DirectoryListing,
    RuntimeEndpoint,
    RuntimeInfo,
    StatsSnapshot,
)
from .services.command_runner import CommandRunner
from .services.container_spec import ContainerSpecBuilder, EngineTemplate, load_templates
from .services.filesystem import FileSystemService
from .services.gateway import RuntimeGateway
from .services.image_identity import ImageIdentityService
from .services.orchestrator import DeploymentOrchestrator
from .services.runtime_api import RuntimeApi
from .services.socket_discovery import SocketDiscovery
from .services.validation import ValidationService

console = Console()
logger = logging.getLogger("dbmanager")

_LEADING_VERSION = re.compile(r"^\d+(?:\.\d+)*")


class DatabaseManager:
    """Caller-facing API: container lifecycle, deployment, logs and stats."""

    def __init__(
        self,
        socket_path: Optional[str] = None,
        dialect: Optional[str] = None,
        label_namespace: Optional[str] = None,
        filesystem_root: str = FILESYSTEM_ROOT,
        storage_mode: str = STORAGE_DIR_MODE,
        default_uid: int = DEFAULT_UID,
        default_gid: int = DEFAULT_GID,
        identity_timeout: float = IDENTITY_TIMEOUT_SECONDS,
        templates: Optional[Dict[str, Dict[str, Any]]] = None,
        endpoint: Optional[RuntimeEndpoint] = None,
        gateway: Optional[RuntimeGateway] = None,
        command_runner: Optional[CommandRunner] = None,
    ):
        self.endpoint = endpoint or SocketDiscovery(logger=logger).resolve(socket_path, dialect)
        self.labels = ManagedLabels(label_namespace)

        self.gateway = gateway or RuntimeGateway(logger=logger)
        self.runtime = RuntimeApi(self.gateway, self.endpoint, logger=logger)
        self.filesystem_service = FileSystemService(
            logger=logger,
            console=console,
            root=filesystem_root,
        )
        self.command_runner = command_runner or CommandRunner(logger=logger)
        self.identity_service = ImageIdentityService(
            command_runner=self.command_runner,
            logger=logger,
            timeout=identity_timeout,
            default_uid=default_uid,
            default_gid=default_gid,
        )
        self.spec_builder = ContainerSpecBuilder(
            templates=load_templates(templates),
            label_namespace=label_namespace,
        )
        self.validation_service = ValidationService()
        self.orchestrator = DeploymentOrchestrator(
            runtime=self.runtime,
            identity_service=self.identity_service,
            filesystem_service=self.filesystem_service,
            spec_builder=self.spec_builder,
            validation_service=self.validation_service,
            logger=logger,
            console=console,
            storage_mode=storage_mode,
        )

    def info(self) -> RuntimeInfo:
        return self.runtime.info()

    def health(self) -> Dict[str, Any]:
        """Reports whether the runtime answers and runs a supported version."""
        report: Dict[str, Any] = {
            "socket_path": self.endpoint.socket_path,
            "dialect": self.endpoint.dialect.value,
            "minimum_version": MIN_RUNTIME_VERSIONS[self.endpoint.dialect.value],
        }
        try:
            info = self.info()
        except DbManagerError as exc:
            report.update({"status": "unhealthy", "error": str(exc)})
            return report

        supported = self._version_at_least(info.version, report["minimum_version"])
        report.update(
            {
                "status": "degraded" if supported is False else "healthy",
                "version": info.version,
                "api_version": info.api_version,
                "version_supported": supported,
            }
        )
        return report

    @staticmethod
    def _version_at_least(current: str, minimum: str) -> Optional[bool]:
        match = _LEADING_VERSION.match(current.strip())
        if not match:
            return None
        try:
            return version.parse(match.group(0)) >= version.parse(minimum)
        except version.InvalidVersion:
            return None

    def list_containers(
        self,
        managed_only: bool = False,
        databases_only: bool = False,
    ) -> List[ContainerRecord]:
        containers = self.runtime.list_containers(all=True)
        if databases_only:
            return [item for item in containers if self.labels.is_database(item.labels)]
        if managed_only:
            return [item for item in containers if self.labels.is_managed(item.labels)]
        return containers

    def get_container(self, container_id: str) -> ContainerRecord:
        return self.runtime.inspect_container(container_id)

    def start_container(self, container_id: str):
        logger.info("Starting container %s", container_id)
        self.runtime.start_container(container_id)

    def stop_container(self, container_id: str):
        logger.info("Stopping container %s", container_id)
        self.runtime.stop_container(container_id)

    def restart_container(self, container_id: str):
        logger.info("Restarting container %s", container_id)
        self.runtime.restart_container(container_id)

    def remove_container(self, container_id: str, force: bool = False):
        logger.info("Removing container %s (force=%s)", container_id, force)
        self.runtime.remove_container(container_id, force=force)

    def deploy(self, request: DeploymentRequest) -> DeploymentResult:
        return self.orchestrator.deploy(request)

    def retry_start(self, container_id: str):
        self.orchestrator.retry_start(container_id)

    def logs(self, container_id: str, tail: int = 100) -> str:
        return self.runtime.container_logs(container_id, tail=tail)

    def stats(self, container_id: str) -> StatsSnapshot:
        return self.runtime.container_stats(container_id)

    def templates(self) -> List[EngineTemplate]:
        return list(self.spec_builder.templates.values())

    def list_directories(self, path: str = "/") -> DirectoryListing:
        return self.filesystem_service.list_directories(path)

    def create_directory(
        self,
        parent: str,
        name: str,
        mode: Optional[str] = None,
        owner: Optional[int] = None,
        group: Optional[int] = None,
    ) -> DirectoryCreation:
        return self.filesystem_service.create_directory(
            parent,
            name,
            mode=mode,
            owner=owner,
            group=group,
        )
