"""
PracticeSync — Enumerations
=============================

String enums shared by the ORM models, the transformers and the API schemas.
Columns store the `.value`, so the database never depends on Python names.
"""

from enum import Enum


class SessionStatus(str, Enum):
    """Local session lifecycle; remote appointment statuses are remapped onto it."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class LocationType(str, Enum):
    TELEHEALTH = "telehealth"
    IN_PERSON = "in-person"


class SyncType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    WEBHOOK = "webhook"
    MANUAL = "manual"


class SyncEntityType(str, Enum):
    PRACTITIONER = "practitioner"
    CLIENT = "client"
    SESSION = "session"
    ALL = "all"


class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    FULL_SYNC = "full_sync"


class SyncLogStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    ERROR = "error"


class SyncHealth(str, Enum):
    """Coarse health derived from recent sync-log entries."""

    HEALTHY = "healthy"
    STALE = "stale"
    ERROR = "error"
