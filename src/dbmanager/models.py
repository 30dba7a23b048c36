"""Shared domain models for db-manager."""

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .errors import DbManagerError
from .labels import ManagedLabels


class Dialect(str, Enum):
    DOCKER = "docker"
    PODMAN = "podman"


@dataclass(frozen=True)
class RuntimeEndpoint:
    """A reachable runtime socket and the dialect it speaks."""

    socket_path: str
    dialect: Dialect

    @classmethod
    def from_path(cls, socket_path: str, dialect: Optional[str] = None) -> "RuntimeEndpoint":
        if dialect:
            return cls(socket_path=socket_path, dialect=Dialect(dialect))
        if "docker.sock" in os.path.basename(socket_path):
            return cls(socket_path=socket_path, dialect=Dialect.DOCKER)
        return cls(socket_path=socket_path, dialect=Dialect.PODMAN)


class ContainerState(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    PAUSED = "paused"
    RESTARTING = "restarting"
    UNKNOWN = "unknown"

    @classmethod
    def from_runtime(cls, value: Optional[str]) -> "ContainerState":
        state = (value or "").strip().lower()
        if state == "running":
            return cls.RUNNING
        if state in {"exited", "stopped", "created", "configured", "dead"}:
            return cls.STOPPED
        if state == "paused":
            return cls.PAUSED
        if state == "restarting":
            return cls.RESTARTING
        return cls.UNKNOWN


@dataclass(frozen=True)
class PortBinding:
    container_port: int
    host_port: Optional[int] = None
    protocol: str = "tcp"
    host_ip: str = ""


@dataclass(frozen=True)
class MountInfo:
    source: str
    destination: str
    mode: str = ""
    rw: bool = True
    propagation: str = ""


@dataclass(frozen=True)
class NetworkInfo:
    name: str
    ip_address: str = ""
    gateway: str = ""
    mac_address: str = ""
    network_id: str = ""


@dataclass(frozen=True)
class ContainerRecord:
    """Dialect-independent view of a runtime container."""

    id: str
    name: str
    image: str = ""
    state: ContainerState = ContainerState.UNKNOWN
    status: str = ""
    ports: List[PortBinding] = field(default_factory=list)
    created: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    mounts: List[MountInfo] = field(default_factory=list)
    networks: List[NetworkInfo] = field(default_factory=list)

    def is_managed(self, namespace: Optional[str] = None) -> bool:
        return ManagedLabels(namespace).is_managed(self.labels)

    def is_database(self, namespace: Optional[str] = None) -> bool:
        return ManagedLabels(namespace).is_database(self.labels)

    def database_type(self, namespace: Optional[str] = None) -> Optional[str]:
        return self.labels.get(ManagedLabels(namespace).database_type)

    def database_name(self, namespace: Optional[str] = None) -> Optional[str]:
        return self.labels.get(ManagedLabels(namespace).database_name)


class EngineType(str, Enum):
    MARIADB = "mariadb"
    POSTGRESQL = "postgresql"


@dataclass(frozen=True)
class DeploymentRequest:
    """Everything needed to provision one database container."""

    engine: EngineType
    name: str
    version: str
    root_password: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    persistent_storage: bool = False
    storage_path: Optional[str] = None
    environment: Dict[str, str] = field(default_factory=dict)

    @property
    def wants_storage(self) -> bool:
        return self.persistent_storage and bool(self.storage_path)


class IdentitySource(str, Enum):
    DISCOVERED = "discovered"
    CLI_UNAVAILABLE = "cli_unavailable"
    COMMAND_FAILED = "command_failed"
    UNPARSEABLE_OUTPUT = "unparseable_output"


@dataclass(frozen=True)
class ImageIdentity:
    uid: int
    gid: int
    user: str
    group: str = ""
    source: IdentitySource = IdentitySource.DISCOVERED

    @property
    def is_fallback(self) -> bool:
        return self.source != IdentitySource.DISCOVERED


@dataclass(frozen=True)
class CreateResult:
    id: str
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class HttpRequest:
    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""


@dataclass(frozen=True)
class RawSocketResponse:
    status_code: int
    status_text: str
    headers: Dict[str, str]
    body: bytes

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")


@dataclass(frozen=True)
class Parsed:
    """A JSON body that parsed cleanly."""

    value: Any


@dataclass(frozen=True)
class Raw:
    """A body kept as sanitized text, either non-JSON or unparseable JSON."""

    text: str


@dataclass(frozen=True)
class LogLine:
    stream: str
    text: str


@dataclass(frozen=True)
class LogOutput:
    lines: List[LogLine]

    @property
    def text(self) -> str:
        return "\n".join(line.text for line in self.lines)


Payload = Union[Parsed, Raw, LogOutput]


@dataclass(frozen=True)
class NormalizedResult:
    status_code: int
    status_text: str
    headers: Dict[str, str]
    payload: Payload

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass(frozen=True)
class StatsSnapshot:
    cpu_percent: float = 0.0
    memory_usage: int = 0
    memory_limit: int = 0
    memory_percent: float = 0.0
    network_rx_bytes: int = 0
    network_tx_bytes: int = 0
    block_read_bytes: int = 0
    block_write_bytes: int = 0
    pids: int = 0


@dataclass(frozen=True)
class RuntimeInfo:
    dialect: Dialect
    version: str = "unknown"
    api_version: str = "unknown"
    os: str = ""
    arch: str = ""
    containers: int = 0
    images: int = 0
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DirectoryListing:
    current_path: str
    parent_path: Optional[str]
    directories: List[str]


@dataclass(frozen=True)
class DirectoryCreation:
    path: str
    operations: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class DeploymentStage(str, Enum):
    REQUESTED = "requested"
    IMAGE_PULLED = "image_pulled"
    USER_DISCOVERED = "user_discovered"
    STORAGE_READY = "storage_ready"
    CREATED = "created"
    STARTED = "started"
    DONE = "done"
    FAILED = "failed"


class FailureStage(str, Enum):
    PULL = "pull"
    DISCOVER = "discover"
    STORAGE = "storage"
    CREATE = "create"
    START = "start"


_NEXT_STAGE = {
    DeploymentStage.REQUESTED: DeploymentStage.IMAGE_PULLED,
    DeploymentStage.IMAGE_PULLED: DeploymentStage.USER_DISCOVERED,
    DeploymentStage.USER_DISCOVERED: DeploymentStage.STORAGE_READY,
    DeploymentStage.STORAGE_READY: DeploymentStage.CREATED,
    DeploymentStage.CREATED: DeploymentStage.STARTED,
    DeploymentStage.STARTED: DeploymentStage.DONE,
}


@dataclass(frozen=True)
class StageEvent:
    stage: DeploymentStage
    at: str
    detail: str = ""


@dataclass
class DeploymentRun:
    """State of one deployment, owned by a single orchestrator call."""

    container_name: str
    image: str
    stage: DeploymentStage = DeploymentStage.REQUESTED
    failed_stage: Optional[FailureStage] = None
    error: Optional[str] = None
    identity: Optional[ImageIdentity] = None
    container_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    history: List[StageEvent] = field(default_factory=list)

    def __post_init__(self):
        if not self.history:
            self.history.append(StageEvent(self.stage, self._now()))

    def advance(self, stage: DeploymentStage, detail: str = ""):
        expected = _NEXT_STAGE.get(self.stage)
        if stage != expected:
            raise DbManagerError(
                f"Invalid deployment transition from '{self.stage.value}' to '{stage.value}'."
            )
        self.stage = stage
        self.history.append(StageEvent(stage, self._now(), detail))

    def fail(self, failed_stage: FailureStage, error: str):
        self.stage = DeploymentStage.FAILED
        self.failed_stage = failed_stage
        self.error = error
        self.history.append(StageEvent(DeploymentStage.FAILED, self._now(), failed_stage.value))

    @property
    def is_terminal(self) -> bool:
        return self.stage in {DeploymentStage.DONE, DeploymentStage.FAILED}

    @property
    def created_but_not_started(self) -> bool:
        return self.failed_stage == FailureStage.START and self.container_id is not None

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class DeploymentResult:
    container_id: str
    container_name: str
    image: str
    identity: ImageIdentity
    warnings: List[str]
    run: DeploymentRun
