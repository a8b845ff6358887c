"""
Enforcement Services

Success fees, bypass penalties and the overdue/legal-notice sweep.
"""

from .state_machine import FeeStateMachine, STATE_CONFIG, OPEN_STATUSES
from .enforcement_ledger import EnforcementLedger, NOTICE_SCHEDULE, HIRE_BYPASS_REASON, EXCLUSIVE_PERIOD, record_to_dict

__all__ = [
    'FeeStateMachine',
    'STATE_CONFIG',
    'OPEN_STATUSES',
    'EnforcementLedger',
    'NOTICE_SCHEDULE',
    'HIRE_BYPASS_REASON',
    'EXCLUSIVE_PERIOD',
    'record_to_dict',
]
