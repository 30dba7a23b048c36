"""Translation between abstract runtime operations and the two socket dialects."""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote, urlencode

from dbmanager.constants import DOCKER_API_PREFIX, PODMAN_API_PREFIX
from dbmanager.errors import DialectError
from dbmanager.models import (
    ContainerRecord,
    ContainerState,
    CreateResult,
    Dialect,
    HttpRequest,
    MountInfo,
    NetworkInfo,
    PortBinding,
    RuntimeInfo,
    StatsSnapshot,
)


class Operation(str, Enum):
    INFO = "info"
    LIST_CONTAINERS = "list_containers"
    INSPECT_CONTAINER = "inspect_container"
    CREATE_CONTAINER = "create_container"
    START_CONTAINER = "start_container"
    STOP_CONTAINER = "stop_container"
    RESTART_CONTAINER = "restart_container"
    REMOVE_CONTAINER = "remove_container"
    PULL_IMAGE = "pull_image"
    CONTAINER_LOGS = "container_logs"
    CONTAINER_STATS = "container_stats"


@dataclass(frozen=True)
class TranslatedRequest:
    method: str
    path: str
    query: Dict[str, str]
    body: Optional[Dict[str, Any]] = None

    @property
    def target(self) -> str:
        if not self.query:
            return self.path
        return f"{self.path}?{urlencode(self.query)}"

    def to_http_request(self) -> HttpRequest:
        body = json.dumps(self.body).encode("utf-8") if self.body is not None else b""
        return HttpRequest(method=self.method, path=self.target, body=body)


class DockerShape:
    """Docker Engine API: versioned paths, name in the query string."""

    dialect = Dialect.DOCKER
    prefix = DOCKER_API_PREFIX
    id_key = "Id"
    warnings_key = "Warnings"

    def create(self, name: str, spec: Dict[str, Any]) -> Tuple[Dict[str, str], Dict[str, Any]]:
        body = {key: value for key, value in spec.items() if key not in {"name", "Name"}}
        return {"name": name}, body

    def pull(self, image: str) -> Tuple[str, Dict[str, str]]:
        return "/images/create", {"fromImage": image}


class PodmanShape:
    """Podman libpod API: libpod paths, name in the request body."""

    dialect = Dialect.PODMAN
    prefix = PODMAN_API_PREFIX
    id_key = "id"
    warnings_key = "warnings"

    def create(self, name: str, spec: Dict[str, Any]) -> Tuple[Dict[str, str], Dict[str, Any]]:
        body = {key: value for key, value in spec.items() if key not in {"name", "Name"}}
        body["Name"] = name
        return {}, body

    def pull(self, image: str) -> Tuple[str, Dict[str, str]]:
        return "/images/pull", {"reference": image}


DialectShape = Union[DockerShape, PodmanShape]

_SHAPES: Dict[Dialect, DialectShape] = {
    Dialect.DOCKER: DockerShape(),
    Dialect.PODMAN: PodmanShape(),
}


def shape_for(dialect: Dialect) -> DialectShape:
    try:
        return _SHAPES[Dialect(dialect)]
    except (KeyError, ValueError) as exc:
        raise DialectError(f"Unsupported runtime dialect: {dialect}") from exc


def _flag(value: Any) -> str:
    return "true" if value else "false"


def _require(params: Mapping[str, Any], key: str, operation: Operation) -> Any:
    value = params.get(key)
    if value in (None, ""):
        raise DialectError(f"Operation '{operation.value}' requires parameter '{key}'.")
    return value


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return default


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


class DialectTranslator:
    """Pure mapping from (dialect, operation, params) to a request shape."""

    def translate(
        self,
        dialect: Dialect,
        operation: Operation,
        params: Optional[Mapping[str, Any]] = None,
    ) -> TranslatedRequest:
        shape = shape_for(dialect)
        params = params or {}

        try:
            operation = Operation(operation)
        except ValueError as exc:
            raise DialectError(f"Unsupported runtime operation: {operation}") from exc

        if operation == Operation.INFO:
            return TranslatedRequest("GET", f"{shape.prefix}/info", {})

        if operation == Operation.LIST_CONTAINERS:
            return TranslatedRequest(
                "GET",
                f"{shape.prefix}/containers/json",
                {"all": _flag(params.get("all", True))},
            )

        if operation == Operation.CREATE_CONTAINER:
            name = _require(params, "name", operation)
            spec = _require(params, "spec", operation)
            query, body = shape.create(name, dict(spec))
            return TranslatedRequest("POST", f"{shape.prefix}/containers/create", query, body)

        if operation == Operation.PULL_IMAGE:
            image = _require(params, "image", operation)
            path, query = shape.pull(image)
            return TranslatedRequest("POST", f"{shape.prefix}{path}", query)

        container_path = self._container_path(shape, params, operation)

        if operation == Operation.INSPECT_CONTAINER:
            return TranslatedRequest("GET", f"{container_path}/json", {})
        if operation == Operation.START_CONTAINER:
            return TranslatedRequest("POST", f"{container_path}/start", {})
        if operation == Operation.STOP_CONTAINER:
            return TranslatedRequest("POST", f"{container_path}/stop", {})
        if operation == Operation.RESTART_CONTAINER:
            return TranslatedRequest("POST", f"{container_path}/restart", {})
        if operation == Operation.REMOVE_CONTAINER:
            return TranslatedRequest(
                "DELETE", container_path, {"force": _flag(params.get("force", False))}
            )
        if operation == Operation.CONTAINER_LOGS:
            return TranslatedRequest(
                "GET",
                f"{container_path}/logs",
                {
                    "stdout": "true",
                    "stderr": "true",
                    "tail": str(_as_int(params.get("tail", 100), 100)),
                    "timestamps": _flag(params.get("timestamps", True)),
                },
            )
        if operation == Operation.CONTAINER_STATS:
            return TranslatedRequest("GET", f"{container_path}/stats", {"stream": "false"})

        raise DialectError(f"Operation '{operation.value}' is not supported by {shape.dialect.value}.")

    @staticmethod
    def _container_path(shape: DialectShape, params: Mapping[str, Any], operation: Operation) -> str:
        container_id = str(_require(params, "container_id", operation))
        return f"{shape.prefix}/containers/{quote(container_id, safe='')}"

    def normalize_payload(self, dialect: Dialect, operation: Operation, value: Any) -> Any:
        if operation == Operation.CREATE_CONTAINER:
            return self.normalize_create(dialect, value)
        if operation == Operation.LIST_CONTAINERS:
            if not isinstance(value, list):
                return []
            return [self.normalize_container(item) for item in value if isinstance(item, dict)]
        if operation == Operation.INSPECT_CONTAINER and isinstance(value, dict):
            return self.normalize_container(value)
        if operation == Operation.CONTAINER_STATS and isinstance(value, dict):
            return self.normalize_stats(value)
        if operation == Operation.INFO and isinstance(value, dict):
            return self.normalize_info(dialect, value)
        return value

    def normalize_create(self, dialect: Dialect, value: Any) -> CreateResult:
        shape = shape_for(dialect)
        data = value if isinstance(value, dict) else {}
        container_id = _pick(data, shape.id_key, "Id", "id", default="")
        warnings = _pick(data, shape.warnings_key, "Warnings", "warnings", default=[])
        return CreateResult(id=str(container_id), warnings=[str(item) for item in warnings or []])

    def normalize_container(self, data: Mapping[str, Any]) -> ContainerRecord:
        config = data.get("Config") or data.get("config") or {}
        network_settings = data.get("NetworkSettings") or data.get("networkSettings") or {}

        raw_state = _pick(data, "State", "state", default="")
        status = _pick(data, "Status", "status", default="")
        if isinstance(raw_state, dict):
            status = status or raw_state.get("Status", "")
            raw_state = _pick(raw_state, "Status", "status", default="")

        names = _pick(data, "Names", "names", default=[]) or []
        name = _pick(data, "Name", "name", default=names[0] if names else "Unnamed")

        labels = _pick(data, "Labels", "labels", default=None)
        if labels is None and isinstance(config, dict):
            labels = config.get("Labels") or config.get("labels")

        return ContainerRecord(
            id=str(_pick(data, "Id", "id", "ID", default="")),
            name=str(name).lstrip("/"),
            image=str(
                _pick(data, "ImageName", default=None)
                or (config.get("Image") if isinstance(config, dict) else None)
                or _pick(data, "Image", "image", default="")
            ),
            state=ContainerState.from_runtime(str(raw_state)),
            status=str(status),
            ports=self._normalize_ports(data, network_settings),
            created=self._normalize_created(_pick(data, "Created", "created", "CreatedAt")),
            labels={str(key): str(val) for key, val in (labels or {}).items()},
            mounts=self._normalize_mounts(_pick(data, "Mounts", "mounts", default=[])),
            networks=self._normalize_networks(data, network_settings),
        )

    @staticmethod
    def _normalize_created(value: Any) -> str:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
        return str(value or "")

    @staticmethod
    def _normalize_ports(data: Mapping[str, Any], network_settings: Any) -> List[PortBinding]:
        ports: List[PortBinding] = []
        listed = _pick(data, "Ports", "ports", default=None)

        if isinstance(listed, list):
            for item in listed:
                if not isinstance(item, dict):
                    continue
                container_port = _pick(item, "PrivatePort", "container_port")
                host_port = _pick(item, "PublicPort", "host_port")
                ports.append(
                    PortBinding(
                        container_port=_as_int(container_port),
                        host_port=_as_int(host_port) if host_port is not None else None,
                        protocol=str(_pick(item, "Type", "protocol", default="tcp")),
                        host_ip=str(_pick(item, "IP", "host_ip", default="")),
                    )
                )
            return ports

        mapping = listed if isinstance(listed, dict) else None
        if mapping is None and isinstance(network_settings, dict):
            mapping = network_settings.get("Ports")
        for key, bindings in (mapping or {}).items():
            port, _, protocol = str(key).partition("/")
            if not bindings:
                ports.append(PortBinding(container_port=_as_int(port), protocol=protocol or "tcp"))
                continue
            for binding in bindings:
                ports.append(
                    PortBinding(
                        container_port=_as_int(port),
                        host_port=_as_int(binding.get("HostPort")) or None,
                        protocol=protocol or "tcp",
                        host_ip=str(binding.get("HostIp") or ""),
                    )
                )
        return ports

    @staticmethod
    def _normalize_mounts(value: Any) -> List[MountInfo]:
        mounts: List[MountInfo] = []
        for item in value or []:
            if isinstance(item, str):
                mounts.append(MountInfo(source="", destination=item))
            elif isinstance(item, dict):
                mounts.append(
                    MountInfo(
                        source=str(_pick(item, "Source", "source", default="")),
                        destination=str(_pick(item, "Destination", "destination", default="")),
                        mode=str(_pick(item, "Mode", "mode", default="")),
                        rw=bool(item.get("RW", item.get("rw", True))),
                        propagation=str(_pick(item, "Propagation", "propagation", default="")),
                    )
                )
        return mounts

    @staticmethod
    def _normalize_networks(data: Mapping[str, Any], network_settings: Any) -> List[NetworkInfo]:
        networks = None
        if isinstance(network_settings, dict):
            networks = network_settings.get("Networks") or network_settings.get("networks")
        if networks is None:
            networks = _pick(data, "Networks", "networks", default=None)

        if isinstance(networks, list):
            return [NetworkInfo(name=str(name)) for name in networks]

        result: List[NetworkInfo] = []
        for name, details in (networks or {}).items():
            details = details or {}
            result.append(
                NetworkInfo(
                    name=str(name),
                    ip_address=str(_pick(details, "IPAddress", "ipAddress", default="")),
                    gateway=str(_pick(details, "Gateway", "gateway", default="")),
                    mac_address=str(_pick(details, "MacAddress", "macAddress", default="")),
                    network_id=str(_pick(details, "NetworkID", "networkID", default="")),
                )
            )
        return result

    def normalize_stats(self, data: Mapping[str, Any]) -> StatsSnapshot:
        listed = data.get("Stats")
        if isinstance(listed, list):
            entry = listed[0] if listed and isinstance(listed[0], dict) else {}
            return StatsSnapshot(
                cpu_percent=round(_as_float(entry.get("CPU")), 2),
                memory_usage=_as_int(entry.get("MemUsage")),
                memory_limit=_as_int(entry.get("MemLimit")),
                memory_percent=round(_as_float(entry.get("MemPerc")), 2),
                network_rx_bytes=_as_int(entry.get("NetInput")),
                network_tx_bytes=_as_int(entry.get("NetOutput")),
                block_read_bytes=_as_int(entry.get("BlockInput")),
                block_write_bytes=_as_int(entry.get("BlockOutput")),
                pids=_as_int(entry.get("PIDs")),
            )

        cpu_stats = data.get("cpu_stats") or {}
        precpu_stats = data.get("precpu_stats") or {}
        cpu_usage = cpu_stats.get("cpu_usage") or {}
        precpu_usage = precpu_stats.get("cpu_usage") or {}
        cpu_delta = _as_int(cpu_usage.get("total_usage")) - _as_int(precpu_usage.get("total_usage"))
        system_delta = _as_int(cpu_stats.get("system_cpu_usage")) - _as_int(
            precpu_stats.get("system_cpu_usage")
        )
        online_cpus = _as_int(cpu_stats.get("online_cpus")) or len(
            cpu_usage.get("percpu_usage") or []
        ) or 1
        cpu_percent = 0.0
        if cpu_delta > 0 and system_delta > 0:
            cpu_percent = cpu_delta / system_delta * online_cpus * 100.0

        memory_stats = data.get("memory_stats") or {}
        memory_detail = memory_stats.get("stats") or {}
        memory_usage = _as_int(memory_stats.get("usage"))
        memory_usage -= _as_int(memory_detail.get("inactive_file", memory_detail.get("cache")))
        memory_usage = max(memory_usage, 0)
        memory_limit = _as_int(memory_stats.get("limit"))
        memory_percent = memory_usage / memory_limit * 100.0 if memory_limit else 0.0

        rx_bytes = tx_bytes = 0
        for network in (data.get("networks") or {}).values():
            rx_bytes += _as_int(network.get("rx_bytes"))
            tx_bytes += _as_int(network.get("tx_bytes"))

        read_bytes = write_bytes = 0
        blkio = (data.get("blkio_stats") or {}).get("io_service_bytes_recursive") or []
        for entry in blkio:
            op = str(entry.get("op", "")).lower()
            if op == "read":
                read_bytes += _as_int(entry.get("value"))
            elif op == "write":
                write_bytes += _as_int(entry.get("value"))

        return StatsSnapshot(
            cpu_percent=round(cpu_percent, 2),
            memory_usage=memory_usage,
            memory_limit=memory_limit,
            memory_percent=round(memory_percent, 2),
            network_rx_bytes=rx_bytes,
            network_tx_bytes=tx_bytes,
            block_read_bytes=read_bytes,
            block_write_bytes=write_bytes,
            pids=_as_int((data.get("pids_stats") or {}).get("current")),
        )

    def normalize_info(self, dialect: Dialect, data: Mapping[str, Any]) -> RuntimeInfo:
        version_block = data.get("version") if isinstance(data.get("version"), dict) else {}
        host = data.get("host") if isinstance(data.get("host"), dict) else {}
        store = data.get("store") if isinstance(data.get("store"), dict) else {}

        containers = data.get("Containers")
        if containers is None:
            containers = (store.get("containerStore") or {}).get("number")
        images = data.get("Images")
        if images is None:
            images = (store.get("imageStore") or {}).get("number")

        return RuntimeInfo(
            dialect=Dialect(dialect),
            version=str(_pick(version_block, "Version") or _pick(data, "ServerVersion", default="unknown")),
            api_version=str(
                _pick(version_block, "APIVersion") or _pick(data, "ApiVersion", default="unknown")
            ),
            os=str(_pick(host, "os") or _pick(data, "OperatingSystem", "OSType", default="")),
            arch=str(_pick(host, "arch") or _pick(data, "Architecture", default="")),
            containers=_as_int(containers),
            images=_as_int(images),
            raw=dict(data),
        )
