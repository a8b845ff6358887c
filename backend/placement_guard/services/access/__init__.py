"""Access ledger and progressive disclosure."""
from .access_ledger import AccessLedger, MIN_LEVEL, MAX_LEVEL
from .disclosure_service import DisclosureService, StagedProfile, UpgradeCheck

__all__ = [
    "AccessLedger",
    "MIN_LEVEL",
    "MAX_LEVEL",
    "DisclosureService",
    "StagedProfile",
    "UpgradeCheck",
]
