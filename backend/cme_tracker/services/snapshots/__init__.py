"""CME Tracker - Shared Report Snapshots"""
from .publisher import (
    SnapshotService, PublishedSnapshot, SnapshotView, SnapshotSummary,
    SnapshotAccessError, SnapshotNotFound, SnapshotExpired, SnapshotTokenMismatch,
    SnapshotFormatError, ExpiryValidationError,
)

__all__ = [
    "SnapshotService", "PublishedSnapshot", "SnapshotView", "SnapshotSummary",
    "SnapshotAccessError", "SnapshotNotFound", "SnapshotExpired", "SnapshotTokenMismatch",
    "SnapshotFormatError", "ExpiryValidationError",
]
