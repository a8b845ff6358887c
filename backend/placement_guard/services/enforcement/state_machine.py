"""
Fee State Machine

Deterministic payment lifecycle for enforcement records.
paid / waived / refunded are terminal. Nothing moves back to pending.
"""
from typing import Any, Dict, List, Tuple

from ...errors import InvalidTransition
from ...models.db_models import EnforcementRecordDB, FeeStatus


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# AUTHORITY MODEL:
# - SYSTEM: overdue processing moves PENDING -> OVERDUE on the daily sweep
# - ADMIN: payments, disputes, waivers and refunds are recorded by staff
#
# =============================================================================

STATE_CONFIG = {
    FeeStatus.PENDING: {
        "description": "Invoice issued, awaiting payment",
        "allowed_transitions": [
            FeeStatus.PAID,
            FeeStatus.OVERDUE,
            FeeStatus.DISPUTED,
            FeeStatus.WAIVED,
            FeeStatus.REFUNDED,
        ],
        "entry_authority": "SYSTEM",
        "open": True,
    },
    FeeStatus.OVERDUE: {
        "description": "Due date passed without payment",
        "allowed_transitions": [
            FeeStatus.PAID,
            FeeStatus.DISPUTED,
            FeeStatus.WAIVED,
        ],
        "entry_authority": "SYSTEM",
        "open": True,
    },
    FeeStatus.DISPUTED: {
        "description": "Employer contests the charge",
        "allowed_transitions": [
            FeeStatus.PAID,
            FeeStatus.WAIVED,
            FeeStatus.REFUNDED,
        ],
        "entry_authority": "ADMIN",
        "open": True,
    },
    FeeStatus.PAID: {
        "description": "Settled",
        "allowed_transitions": [],  # Terminal state
        "entry_authority": "ADMIN",
        "open": False,
    },
    FeeStatus.WAIVED: {
        "description": "Charge waived by staff",
        "allowed_transitions": [],  # Terminal state
        "entry_authority": "ADMIN",
        "open": False,
    },
    FeeStatus.REFUNDED: {
        "description": "Charge refunded",
        "allowed_transitions": [],  # Terminal state
        "entry_authority": "ADMIN",
        "open": False,
    },
}

OPEN_STATUSES = [s for s, cfg in STATE_CONFIG.items() if cfg["open"]]


class FeeStateMachine:
    """Validates and applies payment status transitions."""

    def get_state_config(self, state: FeeStatus) -> Dict[str, Any]:
        return STATE_CONFIG.get(state, {})

    def can_transition(self, from_state: FeeStatus, to_state: FeeStatus) -> Tuple[bool, str]:
        """
        Check if a state transition is allowed.

        Returns (allowed, reason)
        """
        allowed_transitions = self.get_state_config(from_state).get("allowed_transitions", [])
        if to_state in allowed_transitions:
            return True, "Transition allowed"
        return False, f"Cannot transition from {from_state.value} to {to_state.value}"

    def transition(self, record: EnforcementRecordDB, to_state: FeeStatus, when) -> FeeStatus:
        """Move the record to `to_state` or raise InvalidTransition."""
        from_state = record.payment_status
        allowed, reason = self.can_transition(from_state, to_state)
        if not allowed:
            raise InvalidTransition(reason)

        record.payment_status = to_state
        record.updated_at = when
        return from_state

    def is_terminal_state(self, state: FeeStatus) -> bool:
        return len(self.get_state_config(state).get("allowed_transitions", [])) == 0

    def get_next_states(self, state: FeeStatus) -> List[FeeStatus]:
        return self.get_state_config(state).get("allowed_transitions", [])
