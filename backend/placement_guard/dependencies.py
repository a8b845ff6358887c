"""
Placement Guard - FastAPI Dependencies

Builds the EngineContext and the services for one request.
Tests override get_settings / get_clock / get_notifier / get_db.
"""
from functools import lru_cache

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from .clock import SystemClock
from .config import Settings
from .context import EngineContext
from .database import get_db
from .errors import PermissionDenied, PlacementGuardError
from .services.notifications import LoggingNotificationSink, NotificationSink
from .services.profile_store import JsonProfileStore, ProfileStore


@lru_cache()
def get_settings() -> Settings:
    return Settings()


_system_clock = SystemClock()
_logging_sink = LoggingNotificationSink()


def get_clock():
    return _system_clock


def get_notifier() -> NotificationSink:
    return _logging_sink


def get_context(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    clock=Depends(get_clock),
    notifier: NotificationSink = Depends(get_notifier),
) -> EngineContext:
    return EngineContext(db=db, clock=clock, notifier=notifier, settings=settings)


def get_profile_store(settings: Settings = Depends(get_settings)) -> ProfileStore:
    return JsonProfileStore(settings.profile_dir)


def raise_http(error: PlacementGuardError):
    """Translate an engine error into the matching HTTPException."""
    detail = str(error)
    if isinstance(error, PermissionDenied):
        detail = {
            "message": detail,
            "target_level": error.target_level,
            "missing": error.missing,
        }
    raise HTTPException(status_code=error.status_code, detail=detail) from error
