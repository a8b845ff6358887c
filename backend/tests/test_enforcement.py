"""
Tests for the EnforcementLedger and the fee state machine.

Covers:
1. Success fees and bypass penalties inside the exclusive period
2. Idempotent creation
3. Write-once exclusive period
4. Overdue detection and escalating legal notices
5. Payment lifecycle transitions
"""
from datetime import timedelta

import pytest

from placement_guard.errors import InvalidTransition, NotFoundError, ValidationError
from placement_guard.models.db_models import FeeStatus, FeeType, HireSource, NoticeType
from placement_guard.services.enforcement import (
    EXCLUSIVE_PERIOD,
    FeeStateMachine,
    HIRE_BYPASS_REASON,
    record_to_dict,
)

from conftest import CANDIDATE, EMPLOYER, START


@pytest.fixture
def contacted(ledger, db):
    """Pair whose first contact happened at START."""
    ledger.record_activity(EMPLOYER, CANDIDATE, "PROFILE_VIEWED")
    db.commit()


# =============================================================================
# CREATION
# =============================================================================

class TestRecordHire:
    """Billing a hire."""

    def test_platform_hire_raises_success_fee(self, enforcement, contacted, clock):
        hire_date = START + timedelta(days=30)
        clock.set(hire_date)

        records = enforcement.record_hire(EMPLOYER, CANDIDATE, 30000, hire_date)

        assert len(records) == 1
        fee = records[0]
        assert fee.fee_type == FeeType.SUCCESS_FEE
        assert fee.calculated_amount == 4500.0
        assert fee.currency == "GBP"
        assert fee.payment_status == FeeStatus.PENDING
        assert fee.due_date == hire_date + timedelta(days=30)
        assert fee.first_contact_date == START
        assert fee.exclusive_period_end == START + timedelta(days=365)
        assert fee.bypass_detected is False

    def test_external_hire_adds_bypass_penalty(self, enforcement, contacted):
        records = enforcement.record_hire(
            EMPLOYER, CANDIDATE, 30000, START + timedelta(days=90), source=HireSource.EXTERNAL
        )

        fee, penalty = records
        assert fee.bypass_detected is True
        assert penalty.fee_type == FeeType.BYPASS_PENALTY
        assert penalty.reason_code == HIRE_BYPASS_REASON
        assert penalty.calculated_amount == 2000.0
        assert penalty.evidence[0]["type"] == "external_report"

    def test_hire_after_exclusive_period_is_free(self, enforcement, contacted, db):
        records = enforcement.record_hire(EMPLOYER, CANDIDATE, 30000, START + timedelta(days=366))

        assert records == []
        assert enforcement.get_records_for_employer(EMPLOYER) == []

    def test_exclusive_period_is_one_year(self, enforcement, contacted):
        assert EXCLUSIVE_PERIOD == timedelta(days=365)

        last_day = enforcement.record_hire(EMPLOYER, CANDIDATE, 30000, START + timedelta(days=364))
        assert len(last_day) == 1

    def test_hire_on_period_end_is_free(self, enforcement, contacted):
        assert enforcement.record_hire(EMPLOYER, CANDIDATE, 30000, START + timedelta(days=365)) == []

    def test_success_fee_created_once(self, enforcement, contacted):
        first = enforcement.record_hire(EMPLOYER, CANDIDATE, 30000, START + timedelta(days=10))
        second = enforcement.record_hire(EMPLOYER, CANDIDATE, 45000, START + timedelta(days=20))

        assert first[0].id == second[0].id
        assert second[0].base_salary == 30000

    def test_non_positive_salary_rejected(self, enforcement, contacted):
        with pytest.raises(ValidationError):
            enforcement.record_hire(EMPLOYER, CANDIDATE, 0, START)

    def test_first_contact_falls_back_to_grant_creation(self, enforcement, ledger, clock):
        ledger.get_or_create(EMPLOYER, CANDIDATE)
        clock.advance(days=3)

        assert enforcement.first_contact_date(EMPLOYER, CANDIDATE) == START

    def test_first_contact_falls_back_to_now(self, enforcement, clock):
        clock.advance(days=3)

        assert enforcement.first_contact_date(EMPLOYER, CANDIDATE) == START + timedelta(days=3)


class TestBypassPenalty:

    def test_one_open_penalty_per_reason(self, enforcement):
        first = enforcement.create_bypass_penalty(EMPLOYER, CANDIDATE, "message_policy_violation")
        second = enforcement.create_bypass_penalty(EMPLOYER, CANDIDATE, "message_policy_violation")
        other = enforcement.create_bypass_penalty(EMPLOYER, CANDIDATE, "candidate_report")

        assert first.id == second.id
        assert other.id != first.id
        assert first.calculated_amount == 500.0

    def test_closed_penalty_allows_a_new_one(self, enforcement):
        first = enforcement.create_bypass_penalty(EMPLOYER, CANDIDATE, "message_policy_violation")
        enforcement.waive(first.id)

        again = enforcement.create_bypass_penalty(EMPLOYER, CANDIDATE, "message_policy_violation")

        assert again.id != first.id

    def test_exclusive_period_end_is_write_once(self, enforcement):
        penalty = enforcement.create_bypass_penalty(EMPLOYER, CANDIDATE, "hire_bypass")

        with pytest.raises(ValueError):
            penalty.exclusive_period_end = penalty.exclusive_period_end + timedelta(days=1)


# =============================================================================
# QUERIES
# =============================================================================

class TestOverdueQueries:

    def test_overdue_set_is_exact(self, enforcement, clock):
        fee_a = enforcement.create_success_fee(EMPLOYER, "cand-a", 30000, START)
        fee_b = enforcement.create_success_fee(EMPLOYER, "cand-b", 30000, START)
        penalty_c = enforcement.create_bypass_penalty(EMPLOYER, "cand-c", "hire_bypass")
        enforcement.mark_paid(fee_b.id, "BACS-1")

        clock.advance(days=20)
        assert {r.id for r in enforcement.get_overdue_fees()} == {penalty_c.id}

        clock.advance(days=11)
        assert {r.id for r in enforcement.get_overdue_fees()} == {fee_a.id, penalty_c.id}

    def test_total_owed(self, enforcement, contacted):
        fee, penalty = enforcement.record_hire(
            EMPLOYER, CANDIDATE, 30000, START, source=HireSource.EXTERNAL
        )

        assert enforcement.calculate_total_owed(EMPLOYER)["total_amount"] == 6500.0

        enforcement.mark_paid(fee.id)
        totals = enforcement.calculate_total_owed(EMPLOYER)
        assert totals == {"employer_id": EMPLOYER, "total_amount": 2000.0, "count": 1, "currency": "GBP"}

    def test_fees_in_exclusive_period(self, enforcement, contacted, clock):
        fee = enforcement.create_success_fee(EMPLOYER, CANDIDATE, 30000, START)

        assert [r.id for r in enforcement.get_fees_in_exclusive_period(EMPLOYER, CANDIDATE)] == [fee.id]

        clock.advance(days=366)
        assert enforcement.get_fees_in_exclusive_period(EMPLOYER, CANDIDATE) == []

    def test_unknown_record(self, enforcement):
        with pytest.raises(NotFoundError):
            enforcement.get_record("missing")


# =============================================================================
# OVERDUE PROCESSING
# =============================================================================

class TestProcessOverduePayments:
    """Daily sweep with escalating notices."""

    def test_reminder_after_seven_days(self, enforcement, clock, notifier):
        fee = enforcement.create_success_fee(EMPLOYER, CANDIDATE, 30000, START)
        clock.set(fee.due_date + timedelta(days=7))

        result = enforcement.process_overdue_payments()

        assert result["marked_overdue"] == 1
        assert result["notices_sent"] == 1
        assert fee.payment_status == FeeStatus.OVERDUE
        assert [n.notice_type for n in fee.legal_notices] == [NoticeType.REMINDER]
        assert len(notifier.for_channel("billing")) == 1

    def test_notices_never_repeat(self, enforcement, clock):
        fee = enforcement.create_success_fee(EMPLOYER, CANDIDATE, 30000, START)
        clock.set(fee.due_date + timedelta(days=8))
        enforcement.process_overdue_payments()

        result = enforcement.process_overdue_payments()

        assert result["marked_overdue"] == 0
        assert result["notices_sent"] == 0
        assert len(fee.legal_notices) == 1

    def test_crossed_thresholds_all_recorded(self, enforcement, clock, notifier):
        fee = enforcement.create_success_fee(EMPLOYER, CANDIDATE, 30000, START)
        clock.set(fee.due_date + timedelta(days=8))
        enforcement.process_overdue_payments()
        clock.set(fee.due_date + timedelta(days=31))

        result = enforcement.process_overdue_payments()

        assert result["notices_sent"] == 2
        assert [n.notice_type for n in fee.legal_notices] == [
            NoticeType.REMINDER, NoticeType.DEMAND, NoticeType.LEGAL_ACTION,
        ]
        assert len(notifier.for_channel("legal")) == 1

    def test_not_yet_due(self, enforcement, clock):
        enforcement.create_success_fee(EMPLOYER, CANDIDATE, 30000, START)
        clock.advance(days=29)

        result = enforcement.process_overdue_payments()

        assert result["marked_overdue"] == 0
        assert result["notices_sent"] == 0


# =============================================================================
# TRANSITIONS
# =============================================================================

class TestFeeTransitions:

    def test_mark_paid(self, enforcement, clock):
        fee = enforcement.create_success_fee(EMPLOYER, CANDIDATE, 30000, START)
        clock.advance(days=5)

        enforcement.mark_paid(fee.id, "BACS-9")

        assert fee.payment_status == FeeStatus.PAID
        assert fee.paid_at == START + timedelta(days=5)
        assert fee.payment_reference == "BACS-9"

    def test_paid_is_terminal(self, enforcement):
        fee = enforcement.create_success_fee(EMPLOYER, CANDIDATE, 30000, START)
        enforcement.mark_paid(fee.id)

        with pytest.raises(InvalidTransition):
            enforcement.waive(fee.id)

    def test_dispute_needs_reason(self, enforcement):
        fee = enforcement.create_success_fee(EMPLOYER, CANDIDATE, 30000, START)

        with pytest.raises(ValidationError):
            enforcement.raise_dispute(fee.id, "")

        enforcement.raise_dispute(fee.id, "Candidate was introduced by another agency")
        assert fee.payment_status == FeeStatus.DISPUTED
        assert fee.dispute_reason.startswith("Candidate")

    def test_overdue_cannot_be_refunded(self, enforcement):
        fee = enforcement.create_success_fee(EMPLOYER, CANDIDATE, 30000, START)
        enforcement.mark_overdue(fee.id)

        with pytest.raises(InvalidTransition):
            enforcement.refund(fee.id)

    def test_evidence(self, enforcement):
        fee = enforcement.create_success_fee(EMPLOYER, CANDIDATE, 30000, START)

        with pytest.raises(ValidationError):
            enforcement.add_evidence(fee.id, "hearsay")

        enforcement.add_evidence(fee.id, "payroll_records", "https://docs.example/payroll.pdf")
        assert fee.evidence[-1]["type"] == "payroll_records"
        assert fee.evidence[-1]["verification_status"] == "pending"

    def test_record_to_dict(self, enforcement):
        fee = enforcement.create_success_fee(EMPLOYER, CANDIDATE, 30000, START)
        data = record_to_dict(fee)

        assert data["fee_type"] == "success_fee"
        assert data["payment_status"] == "pending"
        assert data["legal_notices"] == []


class TestFeeStateMachine:

    def test_terminal_states(self):
        machine = FeeStateMachine()

        assert machine.is_terminal_state(FeeStatus.PAID)
        assert machine.is_terminal_state(FeeStatus.WAIVED)
        assert machine.is_terminal_state(FeeStatus.REFUNDED)
        assert not machine.is_terminal_state(FeeStatus.PENDING)

    def test_nothing_returns_to_pending(self):
        machine = FeeStateMachine()

        for state in FeeStatus:
            assert FeeStatus.PENDING not in machine.get_next_states(state)

    def test_can_transition_reason(self):
        allowed, reason = FeeStateMachine().can_transition(FeeStatus.PAID, FeeStatus.REFUNDED)

        assert allowed is False
        assert "paid" in reason
