"""
PracticeSync — ORM Models
===========================

Importing this package registers every table on Base.metadata, which both
Alembic autogenerate and the test suite's create_all() depend on.
"""

from practice_sync.models.client import Client
from practice_sync.models.practitioner import Practitioner
from practice_sync.models.session import Session
from practice_sync.models.sync_log import SyncLog

__all__ = ["Client", "Practitioner", "Session", "SyncLog"]
