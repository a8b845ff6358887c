"""
HTTP API tests.

Drives the FastAPI app through TestClient with the database, clock,
notifier, settings and profile store swapped for the test fixtures.
"""
import pytest
from fastapi.testclient import TestClient

from placement_guard.auth import create_access_token
from placement_guard.database import get_db
from placement_guard.dependencies import get_clock, get_notifier, get_profile_store, get_settings
from placement_guard.main import app
from placement_guard.services.profile_store import InMemoryProfileStore

from conftest import CANDIDATE, EMPLOYER, grant_level


@pytest.fixture
def client(db, clock, notifier, settings, profile):
    def override_db():
        yield db

    store = InMemoryProfileStore({CANDIDATE: profile})
    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_profile_store] = lambda: store

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def auth(settings):
    def headers(principal_id: str, role: str):
        token = create_access_token(principal_id, role, settings)
        return {"Authorization": f"Bearer {token}"}
    return headers


@pytest.fixture
def employer(auth):
    return auth(EMPLOYER, "employer")


@pytest.fixture
def candidate(auth):
    return auth(CANDIDATE, "candidate")


@pytest.fixture
def admin(auth):
    return auth("admin-1", "admin")


INTERNAL = {"X-Internal-Key": "test-internal-key"}


class TestAuth:

    def test_missing_token_rejected(self, client):
        response = client.get(f"/access/candidates/{CANDIDATE}/access-level")

        assert response.status_code in (401, 403)

    def test_bad_token_rejected(self, client):
        response = client.get(
            f"/access/candidates/{CANDIDATE}/access-level",
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401

    def test_token_signed_with_other_secret(self, client):
        from placement_guard.config import Settings

        token = create_access_token(EMPLOYER, "employer", Settings(jwt_secret_key="other"))
        response = client.get(
            f"/access/candidates/{CANDIDATE}/access-level",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401

    def test_unknown_role_rejected(self, client, auth):
        response = client.get(f"/access/candidates/{CANDIDATE}/access-level", headers=auth("x", "recruiter"))

        assert response.status_code == 401

    def test_wrong_role(self, client, candidate):
        response = client.get(f"/access/candidates/{CANDIDATE}/access-level", headers=candidate)

        assert response.status_code == 403

    def test_admin_routes_need_admin(self, client, employer):
        assert client.get("/alerts", headers=employer).status_code == 403


class TestAccessRoutes:

    def test_profile_view_is_basic_by_default(self, client, employer):
        response = client.get(f"/access/candidates/{CANDIDATE}/profile", headers=employer)

        assert response.status_code == 200
        body = response.json()
        assert body["level"] == 1
        assert body["view"]["basic_info"]["last_initial"] == "D."
        assert "skills_info" not in body["view"]
        assert "contact_info" not in body["view"]

    def test_unknown_candidate(self, client, employer):
        response = client.get("/access/candidates/cand-unknown/profile", headers=employer)

        assert response.status_code == 404

    def test_posted_profile_must_match_path(self, client, employer, profile):
        response = client.post(
            "/access/candidates/someone-else/profile",
            json=profile.model_dump(mode="json"),
            headers=employer,
        )

        assert response.status_code == 400

    def test_upgrade_without_agreement_lists_missing(self, client, employer):
        response = client.post(
            f"/access/candidates/{CANDIDATE}/request-upgrade",
            json={"target_level": 2},
            headers=employer,
        )

        assert response.status_code == 403
        detail = response.json()["detail"]
        assert detail["target_level"] == 2
        assert detail["missing"] == ["employer_agreement_signature"]

    def test_agreement_unlocks_level_two(self, client, employer):
        signed = client.post(f"/access/candidates/{CANDIDATE}/agreement", headers=employer)
        assert signed.json()["agreement_signed"] is True

        response = client.post(
            f"/access/candidates/{CANDIDATE}/request-upgrade",
            json={"target_level": 2},
            headers=employer,
        )

        assert response.status_code == 200
        assert response.json()["access_level"] == 2

        profile = client.get(f"/access/candidates/{CANDIDATE}/profile", headers=employer).json()
        assert profile["view"]["skills_info"]["work_preferences"]["salary_range"] == "£24,000 - £32,000"

    def test_out_of_range_level(self, client, employer):
        response = client.post(
            f"/access/candidates/{CANDIDATE}/request-upgrade",
            json={"target_level": 7},
            headers=employer,
        )

        assert response.status_code == 400

    def test_access_level_summary(self, client, employer):
        body = client.get(f"/access/candidates/{CANDIDATE}/access-level", headers=employer).json()

        assert body["current_level"] == 1
        assert body["next_level"] == 2
        assert body["can_upgrade"] is False

    def test_track_interaction(self, client, employer):
        response = client.post(
            f"/access/candidates/{CANDIDATE}/track-interaction",
            json={"action": "PROFILE_VIEWED"},
            headers=employer,
        )

        assert response.json() == {"tracked": True}

    def test_report_must_be_own(self, client, candidate):
        response = client.post(
            "/access/candidates/cand-other/report-suspicious",
            json={"employer_id": EMPLOYER, "reason": "Asked for my number"},
            headers=candidate,
        )

        assert response.status_code == 403

    def test_report_acknowledged(self, client, candidate):
        response = client.post(
            f"/access/candidates/{CANDIDATE}/report-suspicious",
            json={"employer_id": EMPLOYER, "reason": "Asked for my number"},
            headers=candidate,
        )

        assert response.status_code == 200
        assert response.json()["acknowledged"] is True


class TestMessageRoutes:

    def test_classify(self, client, employer):
        response = client.post("/moderation/classify", json={"text": "Find me on WhatsApp"}, headers=employer)

        body = response.json()
        assert body["should_block"] is True
        assert [f["category"] for f in body["flags"]] == ["external_platform"]

    def test_clean_message_delivered(self, client, employer):
        response = client.post(
            f"/messages/{CANDIDATE}",
            json={"content": "Could you do an interview on Thursday?"},
            headers=employer,
        )

        body = response.json()
        assert body["delivered"] is True
        assert body["content"] == "Could you do an interview on Thursday?"

    def test_contact_details_blocked(self, client, employer):
        response = client.post(
            f"/messages/{CANDIDATE}",
            json={"content": "Call me on 07123456789"},
            headers=employer,
        )

        body = response.json()
        assert body["delivered"] is False
        assert body["content"] is None

    def test_candidate_sender(self, client, candidate, db):
        from placement_guard.models.db_models import ActivityEventDB

        client.post(f"/messages/{EMPLOYER}", json={"content": "Thanks, Thursday works"}, headers=candidate)

        event = db.query(ActivityEventDB).one()
        assert event.employer_id == EMPLOYER
        assert event.candidate_id == CANDIDATE


class TestAdminRoutes:

    def test_alert_lifecycle(self, client, employer, admin):
        client.post(
            f"/messages/{CANDIDATE}",
            json={"content": "Skip the platform and call me on 07123456789"},
            headers=employer,
        )

        listing = client.get("/alerts", headers=admin).json()
        assert listing["count"] == 2
        critical = next(a for a in listing["alerts"] if a["severity"] == "critical")

        acked = client.post(f"/alerts/{critical['id']}/acknowledge", headers=admin).json()
        assert acked["status"] == "acknowledged"
        assert acked["acknowledged_by"] == "admin-1"

        resolved = client.post(
            f"/alerts/{critical['id']}/resolve", json={"resolution_note": "Account closed"}, headers=admin
        ).json()
        assert resolved["status"] == "resolved"

        again = client.post(f"/alerts/{critical['id']}/acknowledge", headers=admin)
        assert again.status_code == 409

    def test_unknown_alert(self, client, admin):
        assert client.get("/alerts/missing", headers=admin).status_code == 404

    def test_monitoring_report(self, client, admin, candidate):
        client.post(
            f"/access/candidates/{CANDIDATE}/report-suspicious",
            json={"employer_id": EMPLOYER, "reason": "Asked to meet off-platform"},
            headers=candidate,
        )

        report = client.get("/alerts/monitoring-report?hours=24", headers=admin).json()

        assert report["summary"]["total_flags"] == 1

    def test_hire_and_payment(self, client, admin):
        response = client.post(
            "/enforcement/hires",
            json={
                "employer_id": EMPLOYER,
                "candidate_id": CANDIDATE,
                "salary": 30000,
                "hire_date": "2025-04-01T09:00:00",
            },
            headers=admin,
        )
        body = response.json()
        assert body["count"] == 1
        fee = body["records"][0]
        assert fee["calculated_amount"] == 4500.0

        paid = client.post(f"/enforcement/{fee['id']}/paid", json={"payment_reference": "BACS-1"}, headers=admin)
        assert paid.json()["payment_status"] == "paid"

        refused = client.post(f"/enforcement/{fee['id']}/waive", headers=admin)
        assert refused.status_code == 409

        totals = client.get(f"/enforcement/employers/{EMPLOYER}", headers=admin).json()["totals"]
        assert totals["total_amount"] == 0

    def test_unknown_record(self, client, admin):
        assert client.post("/enforcement/missing/waive", headers=admin).status_code == 404


class TestInternalRoutes:

    def test_bad_key(self, client):
        response = client.post("/internal/tick", headers={"X-Internal-Key": "wrong"})

        assert response.status_code == 403

    def test_tick(self, client):
        response = client.post("/internal/tick", headers=INTERNAL)

        assert response.status_code == 200
        assert response.json()["sweeps_run"] == ["hourly", "daily", "weekly"]

    def test_immediate_is_not_a_sweep(self, client):
        assert client.post("/internal/sweep/immediate", headers=INTERNAL).status_code == 400

    def test_hourly_sweep(self, client, ledger, clock, employer):
        grant_level(ledger, 4)
        clock.advance(minutes=1)
        client.get(f"/access/candidates/{CANDIDATE}/profile", headers=employer)
        clock.advance(hours=3)

        body = client.post("/internal/sweep/hourly", headers=INTERNAL).json()

        assert body["task"] == "hourly_sweep"


class TestHealth:

    def test_health(self, client):
        assert client.get("/health").status_code == 200
