"""Typed runtime operations bound to one endpoint."""

import json
from typing import Any, Dict, Iterable, List

from dbmanager.errors import DecodeError, RuntimeApiError
from dbmanager.models import (
    ContainerRecord,
    CreateResult,
    LogOutput,
    NormalizedResult,
    Parsed,
    Raw,
    RuntimeEndpoint,
    RuntimeInfo,
    StatsSnapshot,
)
from dbmanager.services.dialect import Operation
from dbmanager.services.gateway import RuntimeGateway

NOT_MODIFIED = 304


class RuntimeApi:
    """Raises on non-success statuses so callers deal in records, not responses."""

    def __init__(self, gateway: RuntimeGateway, endpoint: RuntimeEndpoint, logger):
        self.gateway = gateway
        self.endpoint = endpoint
        self.logger = logger

    @property
    def dialect(self):
        return self.endpoint.dialect

    def _call(
        self,
        operation: Operation,
        accept: Iterable[int] = (),
        **params: Any,
    ) -> NormalizedResult:
        result = self.gateway.invoke(self.endpoint, operation, params)
        if not result.ok and result.status_code not in set(accept):
            raise RuntimeApiError(result.status_code, self._error_message(result))
        return result

    @staticmethod
    def _error_message(result: NormalizedResult) -> str:
        payload = result.payload
        if isinstance(payload, Parsed) and isinstance(payload.value, dict):
            for key in ("message", "cause", "error"):
                if payload.value.get(key):
                    return str(payload.value[key])
        if isinstance(payload, (Raw, LogOutput)) and payload.text:
            return payload.text[:500]
        return result.status_text or "no details"

    @staticmethod
    def _parsed_value(result: NormalizedResult, operation: Operation) -> Any:
        if not isinstance(result.payload, Parsed):
            raise DecodeError(
                f"Expected a JSON response for '{operation.value}', "
                f"got content type '{result.headers.get('content-type', '')}'."
            )
        return result.payload.value

    def info(self) -> RuntimeInfo:
        result = self._call(Operation.INFO)
        return self._parsed_value(result, Operation.INFO)

    def list_containers(self, all: bool = True) -> List[ContainerRecord]:
        result = self._call(Operation.LIST_CONTAINERS, all=all)
        return self._parsed_value(result, Operation.LIST_CONTAINERS)

    def inspect_container(self, container_id: str) -> ContainerRecord:
        result = self._call(Operation.INSPECT_CONTAINER, container_id=container_id)
        return self._parsed_value(result, Operation.INSPECT_CONTAINER)

    def create_container(self, name: str, spec: Dict[str, Any]) -> CreateResult:
        result = self._call(Operation.CREATE_CONTAINER, name=name, spec=spec)
        created = self._parsed_value(result, Operation.CREATE_CONTAINER)
        if not created.id:
            raise DecodeError(f"Runtime did not return an id for container '{name}'.")
        return created

    def start_container(self, container_id: str):
        self._call(Operation.START_CONTAINER, accept=(NOT_MODIFIED,), container_id=container_id)

    def stop_container(self, container_id: str):
        self._call(Operation.STOP_CONTAINER, accept=(NOT_MODIFIED,), container_id=container_id)

    def restart_container(self, container_id: str):
        self._call(Operation.RESTART_CONTAINER, container_id=container_id)

    def remove_container(self, container_id: str, force: bool = False):
        self._call(Operation.REMOVE_CONTAINER, container_id=container_id, force=force)

    def pull_image(self, image: str) -> List[Dict[str, Any]]:
        """Drains the pull progress stream and fails on an in-stream error record."""
        result = self._call(Operation.PULL_IMAGE, image=image)
        records = self._progress_records(result)
        for record in records:
            self.logger.debug("Pull progress: %s", record)
            if record.get("error"):
                raise RuntimeApiError(result.status_code, str(record["error"]))
        return records

    @staticmethod
    def _progress_records(result: NormalizedResult) -> List[Dict[str, Any]]:
        payload = result.payload
        if isinstance(payload, Parsed):
            values = payload.value if isinstance(payload.value, list) else [payload.value]
            return [value for value in values if isinstance(value, dict)]

        records: List[Dict[str, Any]] = []
        if isinstance(payload, Raw):
            for line in payload.text.split("\n"):
                try:
                    record = json.loads(line)
                except ValueError:
                    continue
                if isinstance(record, dict):
                    records.append(record)
        return records

    def container_logs(self, container_id: str, tail: int = 100) -> str:
        result = self._call(Operation.CONTAINER_LOGS, container_id=container_id, tail=tail)
        if isinstance(result.payload, LogOutput):
            return result.payload.text
        return ""

    def container_stats(self, container_id: str) -> StatsSnapshot:
        result = self._call(Operation.CONTAINER_STATS, container_id=container_id)
        return self._parsed_value(result, Operation.CONTAINER_STATS)
