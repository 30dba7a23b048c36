"""
db-manager - Database container deployment over the Docker/Podman socket API
"""

__version__ = "1.0.0"

from .core import DatabaseManager
from .errors import DbManagerError

__all__ = ["DatabaseManager", "DbManagerError"]
