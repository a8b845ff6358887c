"""
Shared fixtures.

Every test gets a fresh in-memory SQLite database, a ManualClock parked
on a Monday at noon (inside business hours in Europe/London) and a
notifier that records instead of logging.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from placement_guard.clock import ManualClock
from placement_guard.config import Settings
from placement_guard.context import EngineContext
from placement_guard.database import Base
from placement_guard.models import db_models  # noqa: F401
from placement_guard.models.profiles import CandidateProfile
from placement_guard.services.notifications import RecordingNotificationSink


START = datetime(2025, 3, 3, 12, 0)

EMPLOYER = "emp-1"
CANDIDATE = "cand-1"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs to be told to leave transaction control to SQLAlchemy
    # for SAVEPOINT to work
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def notifier():
    return RecordingNotificationSink()


@pytest.fixture
def settings():
    return Settings(
        jwt_secret_key="test-secret",
        internal_api_key="test-internal-key",
    )


@pytest.fixture
def ctx(db, clock, notifier, settings):
    return EngineContext(db=db, clock=clock, notifier=notifier, settings=settings)


@pytest.fixture
def ledger(ctx):
    from placement_guard.services.access import AccessLedger
    return AccessLedger(ctx)


@pytest.fixture
def enforcement(ctx):
    from placement_guard.services.enforcement import EnforcementLedger
    return EnforcementLedger(ctx)


@pytest.fixture
def monitor(ctx):
    from placement_guard.services.monitoring import ActivityMonitor
    return ActivityMonitor(ctx)


@pytest.fixture
def disclosure(ctx, monitor):
    from placement_guard.services.access import DisclosureService
    return DisclosureService(ctx, ledger=monitor.ledger, activity_sink=monitor.track_activity)


@pytest.fixture
def alert_engine(monitor):
    return monitor.alert_engine


def make_profile(candidate_id: str = CANDIDATE) -> CandidateProfile:
    return CandidateProfile(
        candidate_id=candidate_id,
        email="jane.doe@example.com",
        first_name="Jane",
        last_name="Doe",
        date_of_birth=date(2001, 6, 15),
        phone="07123 456789",
        location={
            "street": "12 Market Street",
            "city": "Manchester",
            "postcode": "M1 1AA",
            "latitude": 53.48,
            "longitude": -2.24,
        },
        bio="Apprentice electrician with two years on commercial fit-outs. " * 6,
        career_goals="Qualify as an approved electrician",
        industry_interests=["construction", "energy"],
        skills=["wiring", "testing", "inspection"],
        education=[
            {"institution": "Manchester College", "degree": "Level 3 Electrical", "grade": "Distinction", "year": 2022},
        ],
        certifications=["18th Edition"],
        work_type="full_time",
        salary_range={"min": 25000, "max": 31000},
        work_samples=[{"title": "Office refit", "description": "Lighting circuits", "url": "https://portfolio.example/refit"}],
        achievements=["Apprentice of the year"],
        video_profile={"url": "https://video.example/jane", "duration": 95},
        references=[{"name": "Sam Smith", "relationship": "Supervisor", "text": "Reliable and careful."}],
    )


@pytest.fixture
def profile():
    return make_profile()


def grant_level(ledger, level: int, employer_id: str = EMPLOYER, candidate_id: str = CANDIDATE):
    """Walk a pair up to `level` through the normal prerequisites."""
    from placement_guard.models.db_models import CommitmentType, PaymentStatus

    if level >= 2:
        ledger.sign_agreement(employer_id, candidate_id)
    if level >= 3:
        ledger.record_payment(employer_id, candidate_id, PaymentStatus.PAID, "INV-1")
    if level >= 4:
        ledger.accept_commitment(employer_id, candidate_id, CommitmentType.SUCCESS_FEE)

    def raise_to(grant):
        grant.level = level
        grant.level_granted_at = ledger.ctx.now()

    ledger.mutate(employer_id, candidate_id, raise_to)
    ledger.db.commit()
