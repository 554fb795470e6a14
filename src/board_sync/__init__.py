"""Board Sync - reconcile board cards with a records table and promote calendar events."""

__version__ = "0.1.0"

from .models import (
    BoardCard,
    CalendarEvent,
    CandidateCard,
    DatabaseRecord,
    FieldTypeError,
    SnapshotDecodeError,
)
from .reconcile import difference
from .timestamps import DecodeError, id_to_time

__all__ = [
    "BoardCard",
    "CalendarEvent",
    "CandidateCard",
    "DatabaseRecord",
    "FieldTypeError",
    "SnapshotDecodeError",
    "DecodeError",
    "difference",
    "id_to_time",
    "__version__",
]
