"""Alert rules, lifecycle and sweep scheduling."""
from .rules import AlertRule, default_rules
from .alert_engine import AlertEngine, ALERT_TRANSITIONS, ACTIVE_STATUSES, alert_to_dict
from .scheduler import AlertScheduler, SWEEP_INTERVALS

__all__ = [
    "AlertRule",
    "default_rules",
    "AlertEngine",
    "ALERT_TRANSITIONS",
    "ACTIVE_STATUSES",
    "alert_to_dict",
    "AlertScheduler",
    "SWEEP_INTERVALS",
]
