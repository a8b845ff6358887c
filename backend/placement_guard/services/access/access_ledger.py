"""
Access Ledger

Per (employer, candidate) trust state: level, commercial standing,
monitoring flags and the append-only activity history.

Every read-modify-write on a grant is a compare-and-set on the
grant's version column. A concurrent writer makes the flush raise
StaleDataError; the mutation is re-applied to a fresh copy.

The ledger flushes but never commits. The calling service owns the
transaction boundary.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ...context import EngineContext
from ...errors import PersistenceError, ValidationError
from ...models.db_models import (
    AccessGrantDB,
    ActivityEventDB,
    EmployerStatusDB,
    ActivityAction,
    CommitmentType,
    PaymentStatus,
)

logger = logging.getLogger(__name__)

MIN_LEVEL = 1
MAX_LEVEL = 4

GrantMutator = Callable[[AccessGrantDB], None]


class AccessLedger:
    """Owns AccessGrant, ActivityEvent and EmployerStatus rows."""

    MAX_CAS_ATTEMPTS = 5

    def __init__(self, ctx: EngineContext):
        self.ctx = ctx
        self.db = ctx.db

    # =========================================================================
    # READS
    # =========================================================================

    def get_grant(self, employer_id: str, candidate_id: str) -> Optional[AccessGrantDB]:
        return self.db.query(AccessGrantDB).filter(
            AccessGrantDB.employer_id == employer_id,
            AccessGrantDB.candidate_id == candidate_id,
        ).first()

    def current_level(self, employer_id: str, candidate_id: str) -> int:
        """Missing grant reads as level 1."""
        grant = self.get_grant(employer_id, candidate_id)
        return grant.level if grant else MIN_LEVEL

    def grants_for_employer(self, employer_id: str) -> List[AccessGrantDB]:
        return self.db.query(AccessGrantDB).filter(
            AccessGrantDB.employer_id == employer_id
        ).all()

    def history(
        self,
        employer_id: str,
        candidate_id: str,
        limit: Optional[int] = None,
    ) -> List[ActivityEventDB]:
        """Activity events for the pair, oldest first."""
        query = self.db.query(ActivityEventDB).filter(
            ActivityEventDB.employer_id == employer_id,
            ActivityEventDB.candidate_id == candidate_id,
        ).order_by(ActivityEventDB.occurred_at.asc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def is_employer_suspended(self, employer_id: str) -> bool:
        status = self.db.get(EmployerStatusDB, employer_id)
        return bool(status and status.suspended)

    # =========================================================================
    # GRANT CREATION + COMPARE-AND-SET
    # =========================================================================

    def get_or_create(self, employer_id: str, candidate_id: str) -> AccessGrantDB:
        """
        Lazily create the level-1 grant.

        A concurrent creator wins through the unique constraint; the
        loser reloads the winner's row.
        """
        grant = self.get_grant(employer_id, candidate_id)
        if grant is not None:
            return grant

        now = self.ctx.now()
        grant = AccessGrantDB(
            id=str(uuid4()),
            employer_id=employer_id,
            candidate_id=candidate_id,
            level=MIN_LEVEL,
            payment_status=PaymentStatus.NONE,
            commitment_type=CommitmentType.NONE,
            agreement_signed=False,
            suspicious_activity=False,
            external_contact_attempts=0,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.db.begin_nested():
                self.db.add(grant)
                self.db.flush()
        except IntegrityError:
            logger.info(f"Grant for {employer_id}->{candidate_id} created concurrently, reloading")
            grant = self.get_grant(employer_id, candidate_id)
            if grant is None:
                raise PersistenceError(f"Grant for {employer_id}->{candidate_id} vanished after conflict")
        return grant

    def mutate(self, employer_id: str, candidate_id: str, mutator: GrantMutator) -> AccessGrantDB:
        """
        Apply `mutator` to the pair's grant as one compare-and-set.

        The mutator may raise to abort; nothing is written in that case.
        """
        for attempt in range(1, self.MAX_CAS_ATTEMPTS + 1):
            grant = self.get_or_create(employer_id, candidate_id)
            try:
                with self.db.begin_nested():
                    mutator(grant)
                    grant.updated_at = self.ctx.now()
                    self.db.flush()
                return grant
            except StaleDataError:
                logger.warning(
                    f"Version conflict on grant {employer_id}->{candidate_id} "
                    f"(attempt {attempt}/{self.MAX_CAS_ATTEMPTS})"
                )
                self.db.expire(grant)

        raise PersistenceError(
            f"Could not update grant {employer_id}->{candidate_id} "
            f"after {self.MAX_CAS_ATTEMPTS} attempts"
        )

    # =========================================================================
    # HISTORY
    # =========================================================================

    def append_event(
        self,
        employer_id: str,
        candidate_id: str,
        action: str,
        level: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
    ) -> ActivityEventDB:
        """Insert one immutable activity event."""
        event = ActivityEventDB(
            id=str(uuid4()),
            employer_id=employer_id,
            candidate_id=candidate_id,
            action=action.value if isinstance(action, ActivityAction) else str(action),
            level=level,
            occurred_at=occurred_at or self.ctx.now(),
            event_metadata=metadata or {},
        )
        self.db.add(event)
        self.db.flush()
        return event

    def record_activity(
        self,
        employer_id: str,
        candidate_id: str,
        action: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ActivityEventDB:
        """
        Append an event and stamp last_activity_at.

        The first event for a pair fixes first_contact_at, which anchors
        the exclusive period.
        """
        now = self.ctx.now()

        def touch(grant: AccessGrantDB) -> None:
            grant.last_activity_at = now
            if grant.first_contact_at is None:
                grant.first_contact_at = now

        self.mutate(employer_id, candidate_id, touch)
        return self.append_event(employer_id, candidate_id, action, metadata=metadata, occurred_at=now)

    # =========================================================================
    # COMMERCIAL STANDING
    # =========================================================================

    def sign_agreement(self, employer_id: str, candidate_id: str) -> AccessGrantDB:
        now = self.ctx.now()

        def sign(grant: AccessGrantDB) -> None:
            if not grant.agreement_signed:
                grant.agreement_signed = True
                grant.agreement_signed_at = now

        grant = self.mutate(employer_id, candidate_id, sign)
        self.append_event(employer_id, candidate_id, ActivityAction.AGREEMENT_SIGNED, occurred_at=now)
        return grant

    def record_payment(
        self,
        employer_id: str,
        candidate_id: str,
        status: PaymentStatus,
        reference: Optional[str] = None,
    ) -> AccessGrantDB:
        try:
            status = PaymentStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown payment status: {status}")

        def pay(grant: AccessGrantDB) -> None:
            grant.payment_status = status
            if reference:
                grant.payment_reference = reference

        grant = self.mutate(employer_id, candidate_id, pay)
        self.append_event(
            employer_id, candidate_id, ActivityAction.PAYMENT_RECORDED,
            metadata={"status": status.value, "reference": reference},
        )
        return grant

    def accept_commitment(
        self,
        employer_id: str,
        candidate_id: str,
        commitment: CommitmentType,
    ) -> AccessGrantDB:
        """
        Record a commercial commitment.

        A success-fee commitment also moves payment_status none -> pending,
        which satisfies the level-3 payment prerequisite.
        """
        try:
            commitment = CommitmentType(commitment)
        except ValueError:
            raise ValidationError(f"Unknown commitment type: {commitment}")
        if commitment == CommitmentType.NONE:
            raise ValidationError("Commitment type must not be 'none'")

        def commit_to(grant: AccessGrantDB) -> None:
            grant.commitment_type = commitment
            if commitment == CommitmentType.SUCCESS_FEE and grant.payment_status == PaymentStatus.NONE:
                grant.payment_status = PaymentStatus.PENDING

        grant = self.mutate(employer_id, candidate_id, commit_to)
        self.append_event(
            employer_id, candidate_id, ActivityAction.COMMITMENT_ACCEPTED,
            metadata={"commitment_type": commitment.value},
        )
        return grant

    # =========================================================================
    # RESTRICTIONS (tighten only)
    # =========================================================================

    def mark_suspicious(
        self,
        employer_id: str,
        candidate_id: str,
        count_attempt: bool = True,
    ) -> AccessGrantDB:
        """Set suspicious_activity and bump the external contact counter."""

        def flag(grant: AccessGrantDB) -> None:
            grant.suspicious_activity = True
            if count_attempt:
                grant.external_contact_attempts = (grant.external_contact_attempts or 0) + 1

        return self.mutate(employer_id, candidate_id, flag)

    def restrict_employer(self, employer_id: str) -> int:
        """Mark every grant held by the employer suspicious. Returns rows changed."""
        changed = 0
        for grant in self.grants_for_employer(employer_id):
            if grant.suspicious_activity:
                continue
            self.mutate(grant.employer_id, grant.candidate_id, _set_suspicious)
            changed += 1
        return changed

    def suspend_employer(self, employer_id: str, reason: str) -> bool:
        """
        Block the employer's access everywhere.

        Idempotent: returns False when the employer was already suspended.
        """
        self.restrict_employer(employer_id)

        status = self.db.get(EmployerStatusDB, employer_id)
        if status is not None and status.suspended:
            return False

        now = self.ctx.now()
        if status is None:
            status = EmployerStatusDB(employer_id=employer_id)
            self.db.add(status)
        status.suspended = True
        status.suspended_at = now
        status.reason = reason
        self.db.flush()

        logger.warning(f"Employer {employer_id} suspended: {reason}")
        return True


def _set_suspicious(grant: AccessGrantDB) -> None:
    grant.suspicious_activity = True
