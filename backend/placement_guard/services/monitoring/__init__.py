"""Behavioural monitoring and message gating."""
from .activity_monitor import ActivityMonitor, MessageDecision

__all__ = ["ActivityMonitor", "MessageDecision"]
