"""Service layer: catalog, versions, automation rules and access control."""

from drive.services.access_service import AccessControl
from drive.services.catalog_service import StorageCatalog
from drive.services.condition_service import ConditionEngine
from drive.services.version_service import VersionLedger

__all__ = [
    "AccessControl",
    "ConditionEngine",
    "StorageCatalog",
    "VersionLedger",
]
