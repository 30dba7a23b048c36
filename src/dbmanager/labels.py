"""Label set marking containers owned by db-manager."""

from typing import Dict, Mapping, Optional

from .constants import LABEL_NAMESPACE, MANAGED_MARKER


class ManagedLabels:
    """Builds and reads the `<ns>.*` labels written at creation time."""

    def __init__(self, namespace: Optional[str] = None):
        self.namespace = namespace or LABEL_NAMESPACE

    @property
    def managed(self) -> str:
        return f"{self.namespace}.managed"

    @property
    def database_type(self) -> str:
        return f"{self.namespace}.database-type"

    @property
    def database_name(self) -> str:
        return f"{self.namespace}.database-name"

    @property
    def database_port(self) -> str:
        return f"{self.namespace}.database-port"

    def build(self, database_type: str, database_name: str, port: int) -> Dict[str, str]:
        return {
            self.database_type: database_type,
            self.database_name: database_name,
            self.database_port: str(port),
            self.managed: MANAGED_MARKER,
        }

    def is_managed(self, labels: Optional[Mapping[str, str]]) -> bool:
        if not labels:
            return False
        return labels.get(self.managed) == MANAGED_MARKER

    def is_database(self, labels: Optional[Mapping[str, str]]) -> bool:
        return self.is_managed(labels) and bool(labels.get(self.database_type))
