"""
Tests for the AccessLedger and DisclosureService.

Covers:
1. Lazy grant creation, version column and CAS retry
2. Upgrade prerequisites per level and level monotonicity
3. Staged views per level (no contact leakage below level 4)
4. Restriction projection, including suspicious grants
5. View tracking writes activity events
"""
from datetime import date

import pytest
from sqlalchemy.orm.exc import StaleDataError

from placement_guard.errors import PermissionDenied, PersistenceError, ValidationError
from placement_guard.models.db_models import (
    AccessGrantDB,
    ActivityAction,
    ActivityEventDB,
    CommitmentType,
    PaymentStatus,
    project_restrictions,
)
from placement_guard.services.access.disclosure_service import (
    REQUIREMENT_AGREEMENT,
    REQUIREMENT_COMMITMENT,
    REQUIREMENT_PAYMENT,
    approximate_age,
    format_salary_range,
    truncate_text,
    watermark_url,
)
from placement_guard.models.profiles import SalaryRange

from conftest import CANDIDATE, EMPLOYER, START, grant_level


# =============================================================================
# ACCESS LEDGER
# =============================================================================

class TestAccessLedger:
    """Grant storage and compare-and-set."""

    def test_missing_grant_reads_as_level_one(self, ledger):
        assert ledger.get_grant(EMPLOYER, CANDIDATE) is None
        assert ledger.current_level(EMPLOYER, CANDIDATE) == 1

    def test_get_or_create_is_idempotent(self, ledger, db):
        first = ledger.get_or_create(EMPLOYER, CANDIDATE)
        second = ledger.get_or_create(EMPLOYER, CANDIDATE)

        assert first.id == second.id
        assert first.level == 1
        assert db.query(AccessGrantDB).count() == 1

    def test_mutation_bumps_version(self, ledger):
        grant = ledger.get_or_create(EMPLOYER, CANDIDATE)
        version = grant.version

        ledger.sign_agreement(EMPLOYER, CANDIDATE)

        assert grant.version == version + 1
        assert grant.agreement_signed is True
        assert grant.agreement_signed_at == START

    def test_stale_write_is_retried(self, ledger):
        ledger.get_or_create(EMPLOYER, CANDIDATE)
        calls = {"n": 0}

        def conflicting_once(grant):
            calls["n"] += 1
            if calls["n"] == 1:
                raise StaleDataError("concurrent update")
            grant.suspicious_activity = True

        grant = ledger.mutate(EMPLOYER, CANDIDATE, conflicting_once)

        assert calls["n"] == 2
        assert grant.suspicious_activity is True

    def test_persistent_conflict_raises(self, ledger):
        ledger.get_or_create(EMPLOYER, CANDIDATE)

        def always_stale(grant):
            raise StaleDataError("concurrent update")

        with pytest.raises(PersistenceError):
            ledger.mutate(EMPLOYER, CANDIDATE, always_stale)

    def test_record_activity_sets_first_contact_once(self, ledger, clock):
        ledger.record_activity(EMPLOYER, CANDIDATE, ActivityAction.PROFILE_VIEWED.value)
        clock.advance(hours=3)
        ledger.record_activity(EMPLOYER, CANDIDATE, ActivityAction.PROFILE_VIEWED.value)

        grant = ledger.get_grant(EMPLOYER, CANDIDATE)
        assert grant.first_contact_at == START
        assert grant.last_activity_at == clock.now()
        assert len(ledger.history(EMPLOYER, CANDIDATE)) == 2

    def test_first_contact_is_write_once(self, ledger):
        ledger.record_activity(EMPLOYER, CANDIDATE, "PROFILE_VIEWED")
        grant = ledger.get_grant(EMPLOYER, CANDIDATE)

        with pytest.raises(ValueError):
            grant.first_contact_at = date(2030, 1, 1)

    def test_success_fee_commitment_sets_payment_pending(self, ledger):
        grant = ledger.accept_commitment(EMPLOYER, CANDIDATE, CommitmentType.SUCCESS_FEE)

        assert grant.commitment_type == CommitmentType.SUCCESS_FEE
        assert grant.payment_status == PaymentStatus.PENDING

    def test_commitment_none_rejected(self, ledger):
        with pytest.raises(ValidationError):
            ledger.accept_commitment(EMPLOYER, CANDIDATE, CommitmentType.NONE)

    def test_unknown_payment_status_rejected(self, ledger):
        with pytest.raises(ValidationError):
            ledger.record_payment(EMPLOYER, CANDIDATE, "gift")

    def test_mark_suspicious_counts_attempts(self, ledger):
        ledger.mark_suspicious(EMPLOYER, CANDIDATE)
        grant = ledger.mark_suspicious(EMPLOYER, CANDIDATE)

        assert grant.suspicious_activity is True
        assert grant.external_contact_attempts == 2

    def test_suspend_employer_restricts_every_grant(self, ledger):
        ledger.get_or_create(EMPLOYER, "cand-a")
        ledger.get_or_create(EMPLOYER, "cand-b")
        ledger.get_or_create("emp-other", "cand-a")

        assert ledger.suspend_employer(EMPLOYER, "bypass") is True
        assert ledger.suspend_employer(EMPLOYER, "bypass again") is False

        assert ledger.is_employer_suspended(EMPLOYER)
        assert all(g.suspicious_activity for g in ledger.grants_for_employer(EMPLOYER))
        assert not ledger.get_grant("emp-other", "cand-a").suspicious_activity


class TestRestrictionProjection:
    """Restrictions are a pure function of (level, suspicious)."""

    @pytest.mark.parametrize("level,expected", [
        (1, {"contact_blocked": True, "download_blocked": True, "external_sharing_blocked": True}),
        (2, {"contact_blocked": True, "download_blocked": True, "external_sharing_blocked": True}),
        (3, {"contact_blocked": True, "download_blocked": False, "external_sharing_blocked": True}),
        (4, {"contact_blocked": False, "download_blocked": False, "external_sharing_blocked": False}),
    ])
    def test_by_level(self, level, expected):
        assert project_restrictions(level, False) == expected

    def test_suspicious_blocks_everything(self):
        assert all(project_restrictions(4, True).values())


# =============================================================================
# UPGRADES
# =============================================================================

class TestRequestUpgrade:
    """Prerequisites and monotonicity."""

    def test_level_two_requires_agreement(self, disclosure):
        with pytest.raises(PermissionDenied) as exc:
            disclosure.request_upgrade(EMPLOYER, CANDIDATE, 2)

        assert exc.value.missing == [REQUIREMENT_AGREEMENT]
        assert disclosure.ledger.current_level(EMPLOYER, CANDIDATE) == 1

    def test_level_four_lists_every_missing_requirement(self, disclosure):
        with pytest.raises(PermissionDenied) as exc:
            disclosure.request_upgrade(EMPLOYER, CANDIDATE, 4)

        assert exc.value.missing == [
            REQUIREMENT_AGREEMENT,
            REQUIREMENT_PAYMENT,
            REQUIREMENT_COMMITMENT,
        ]

    def test_level_four_denied_without_commitment(self, disclosure, ledger):
        ledger.sign_agreement(EMPLOYER, CANDIDATE)
        ledger.record_payment(EMPLOYER, CANDIDATE, PaymentStatus.PAID)

        with pytest.raises(PermissionDenied) as exc:
            disclosure.request_upgrade(EMPLOYER, CANDIDATE, 4)

        assert exc.value.missing == [REQUIREMENT_COMMITMENT]

    def test_upgrade_with_commitment_in_request(self, disclosure, ledger, db):
        ledger.sign_agreement(EMPLOYER, CANDIDATE)

        level = disclosure.request_upgrade(
            EMPLOYER, CANDIDATE, 4,
            commitment=CommitmentType.SUCCESS_FEE,
            payment_reference="PO-77",
        )

        assert level == 4
        upgrade = db.query(ActivityEventDB).filter(
            ActivityEventDB.action == ActivityAction.ACCESS_UPGRADED.value
        ).one()
        assert upgrade.level == 4
        assert upgrade.event_metadata["from_level"] == 1
        assert upgrade.event_metadata["payment_reference"] == "PO-77"

    def test_lower_target_is_a_no_op(self, disclosure, ledger):
        grant_level(ledger, 3)

        assert disclosure.request_upgrade(EMPLOYER, CANDIDATE, 2) == 3
        assert disclosure.ledger.current_level(EMPLOYER, CANDIDATE) == 3

    @pytest.mark.parametrize("bad", [0, 5, -1, "3", 2.5, True])
    def test_invalid_level_rejected(self, disclosure, bad, db):
        with pytest.raises(ValidationError):
            disclosure.request_upgrade(EMPLOYER, CANDIDATE, bad)

        assert db.query(AccessGrantDB).count() == 0

    def test_can_upgrade_access(self, disclosure, ledger):
        assert disclosure.can_upgrade_access(EMPLOYER, CANDIDATE, 2).allowed is False
        ledger.sign_agreement(EMPLOYER, CANDIDATE)

        check = disclosure.can_upgrade_access(EMPLOYER, CANDIDATE, 2)
        assert check.allowed is True
        assert check.missing == []

    def test_access_summary(self, disclosure, ledger):
        ledger.sign_agreement(EMPLOYER, CANDIDATE)
        summary = disclosure.get_access_summary(EMPLOYER, CANDIDATE)

        assert summary["current_level"] == 1
        assert summary["next_level"] == 2
        assert summary["can_upgrade"] is True
        assert summary["agreement_signed"] is True
        assert summary["restrictions"]["contact_blocked"] is True


# =============================================================================
# STAGED VIEWS
# =============================================================================

class TestStagedProfile:
    """What each level exposes."""

    def test_level_one_hides_contact_and_exact_values(self, disclosure, profile):
        staged = disclosure.get_staged_profile(EMPLOYER, CANDIDATE, profile)
        flat = repr(staged.view)

        assert staged.level == 1
        assert set(staged.view) == {"candidate_id", "access_metadata", "basic_info"}
        assert "jane.doe@example.com" not in flat
        assert "07123 456789" not in flat
        assert "M1 1AA" not in flat
        assert "53.48" not in flat
        assert "25000" not in flat and "31000" not in flat
        assert staged.view["basic_info"]["last_initial"] == "D."
        assert staged.view["basic_info"]["location"]["region"] == "North West England"

    def test_contact_details_in_bio_are_redacted(self, disclosure, profile):
        profile = profile.model_copy(
            update={"bio": "Reach me on 07123 456789 or jane.doe@example.com"}
        )

        staged = disclosure.get_staged_profile(EMPLOYER, CANDIDATE, profile)
        flat = repr(staged.view)

        assert "jane.doe@example.com" not in flat
        assert "07123 456789" not in flat
        assert staged.view["basic_info"]["profile_summary"] == "Reach me on [REDACTED] or [REDACTED]"

    def test_contact_details_in_goals_and_references_are_redacted(self, disclosure, ledger, profile):
        reference = profile.references[0].model_copy(update={"text": "Email her at jane.doe@example.com"})
        profile = profile.model_copy(update={
            "career_goals": "Find work via WhatsApp 07123 456789",
            "references": [reference],
        })
        grant_level(ledger, 3)

        staged = disclosure.get_staged_profile(EMPLOYER, CANDIDATE, profile)
        flat = repr(staged.view)

        assert "07123 456789" not in flat
        assert "jane.doe@example.com" not in flat
        assert "[REDACTED]" in staged.view["skills_info"]["career_goals"]

    def test_contact_tier_shows_free_text_unredacted(self, disclosure, ledger, profile):
        profile = profile.model_copy(update={"bio": "Reach me on 07123 456789"})
        grant_level(ledger, 4)

        staged = disclosure.get_staged_profile(EMPLOYER, CANDIDATE, profile)

        assert staged.view["basic_info"]["profile_summary"] == "Reach me on 07123 456789"

    def test_level_two_adds_skills_with_salary_band(self, disclosure, ledger, profile):
        grant_level(ledger, 2)
        staged = disclosure.get_staged_profile(EMPLOYER, CANDIDATE, profile)

        skills = staged.view["skills_info"]
        assert skills["skills"] == ["wiring", "testing", "inspection"]
        assert skills["work_preferences"]["salary_range"] == "£24,000 - £32,000"
        assert "portfolio_info" not in staged.view
        assert "contact_info" not in staged.view

    def test_level_three_watermarks_video(self, disclosure, ledger, profile):
        grant_level(ledger, 3)
        staged = disclosure.get_staged_profile(EMPLOYER, CANDIDATE, profile)

        video = staged.view["portfolio_info"]["video_profile"]
        assert video["url"] == f"https://video.example/jane?watermark={EMPLOYER}&access=limited"
        assert video["duration"] == 30
        assert staged.view["portfolio_info"]["references"] == [
            {"relationship": "Supervisor", "text": "Reliable and careful."}
        ]
        assert "contact_info" not in staged.view

    def test_level_four_exposes_contact(self, disclosure, ledger, profile, db):
        grant_level(ledger, 4)
        staged = disclosure.get_staged_profile(EMPLOYER, CANDIDATE, profile)

        contact = staged.view["contact_info"]
        assert contact["email"] == "jane.doe@example.com"
        assert contact["full_address"] == "12 Market Street, Manchester, M1 1AA"
        assert staged.restrictions["contact_blocked"] is False

        events = db.query(ActivityEventDB).filter(
            ActivityEventDB.action == ActivityAction.CONTACT_ACCESSED.value
        ).all()
        assert len(events) == 1

    def test_suspicious_grant_sees_basic_view_only(self, disclosure, ledger, profile):
        grant_level(ledger, 4)
        ledger.mark_suspicious(EMPLOYER, CANDIDATE)

        staged = disclosure.get_staged_profile(EMPLOYER, CANDIDATE, profile)

        assert staged.level == 4
        assert "contact_info" not in staged.view
        assert "skills_info" not in staged.view
        assert all(staged.restrictions.values())

    def test_view_is_recorded(self, disclosure, profile, db):
        disclosure.get_staged_profile(EMPLOYER, CANDIDATE, profile)

        event = db.query(ActivityEventDB).one()
        assert event.action == ActivityAction.PROFILE_VIEWED.value
        assert event.event_metadata == {"access_level": 1}

    def test_failed_view_recording_does_not_block_read(self, ctx, profile):
        from placement_guard.services.access import DisclosureService

        def broken_sink(*args):
            raise PersistenceError("store unavailable")

        service = DisclosureService(ctx, activity_sink=broken_sink)
        staged = service.get_staged_profile(EMPLOYER, CANDIDATE, profile)

        assert staged.level == 1


class TestFieldTransforms:
    """Anonymising helpers."""

    def test_approximate_age_band(self):
        assert approximate_age(date(2001, 6, 15), date(2025, 3, 3)) == "20-24"
        assert approximate_age(date(2000, 3, 3), date(2025, 3, 3)) == "25-29"
        assert approximate_age(None, date(2025, 3, 3)) is None

    def test_salary_rounded_outward(self):
        assert format_salary_range(SalaryRange(min=25000, max=31000)) == "£24,000 - £32,000"
        assert format_salary_range(None) == "Not specified"

    def test_truncate(self):
        assert truncate_text("short") == "short"
        assert truncate_text("x" * 250).endswith("...")
        assert len(truncate_text("x" * 250)) == 203

    def test_watermark_appends_to_existing_query(self):
        assert watermark_url("https://v.example/a?t=1", "e1") == "https://v.example/a?t=1&watermark=e1&access=limited"
