"""
Placement Guard - Error Types

Routers map these onto HTTP status codes; services raise them.
"""
from typing import List, Optional


class PlacementGuardError(Exception):
    """Base class for all engine errors."""

    status_code = 500


class ValidationError(PlacementGuardError):
    """Malformed request, rejected before any write."""

    status_code = 400


class PermissionDenied(PlacementGuardError):
    """Upgrade prerequisites unmet. `missing` lists the requirement codes."""

    status_code = 403

    def __init__(self, missing: List[str], target_level: Optional[int] = None):
        self.missing = list(missing)
        self.target_level = target_level
        super().__init__(
            f"Cannot upgrade to level {target_level}. Missing: {', '.join(self.missing)}"
        )


class NotFoundError(PlacementGuardError):
    status_code = 404


class InvalidTransition(PlacementGuardError):
    """State machine refused the requested transition."""

    status_code = 409


class PersistenceError(PlacementGuardError):
    """Wraps a store failure so callers can decide fail-open vs fail-closed."""

    status_code = 503
