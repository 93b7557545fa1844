"""Pydantic schemas for the persisted catalog snapshot."""

from drive.schemas.snapshot import (
    AccessRecordSchema,
    CatalogEntrySchema,
    CatalogSnapshot,
    RuleSchema,
    VersionSchema,
)

__all__ = [
    "AccessRecordSchema",
    "CatalogEntrySchema",
    "CatalogSnapshot",
    "RuleSchema",
    "VersionSchema",
]
