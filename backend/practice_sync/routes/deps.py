"""
PracticeSync — Route Dependencies
===================================

Services are built once in the application lifespan and parked on
app.state; these accessors hand them to route handlers through Depends(),
which also lets tests swap them with app.dependency_overrides.
"""

from fastapi import Request

from practice_sync.config import Settings
from practice_sync.services.sync_service import SyncService


def get_sync_service(request: Request) -> SyncService:
    return request.app.state.sync_service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
