"""
Sign-out lifecycle engine.

Creates sign-out events (one row per person, written atomically), moves
them from OUT to IN with a single conditional UPDATE and serves the grouped
read projections. Callers are responsible for authorization; the engine
never checks permissions itself.
"""
import secrets
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, List, Optional, Sequence

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import transaction
from app.core.errors import ConflictError, ValidationError
from app.features.signouts.models import SignoutEntry, SignoutStatus
from app.features.signouts.projection import SignoutEvent, group_entries
from app.features.signouts.schemas import PersonCreate
from app.features.users.models import User
from app.utils import get_logger, utcnow


log = get_logger(__name__)

MAX_ID_ATTEMPTS = 5


def generate_signout_id(now: datetime) -> str:
    """`SO<yymmdd>-<6 hex>`, e.g. SO251019-3FA2C1."""
    return f"SO{now:%y%m%d}-{secrets.token_hex(3).upper()}"


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


@dataclass(frozen=True)
class SignInResult:
    success: bool
    reason: str
    count: int = 0


@dataclass(frozen=True)
class SignoutFilter:
    status: Optional[SignoutStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    soldier_name: Optional[str] = None
    location: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.status or self.start_date or self.end_date or self.soldier_name or self.location)

    def conditions(self) -> list:
        conditions = []
        if self.start_date:
            conditions.append(SignoutEntry.sign_out_time >= datetime.combine(self.start_date, time.min))
        if self.end_date:
            # inclusive end day
            next_day = datetime.combine(self.end_date + timedelta(days=1), time.min)
            conditions.append(SignoutEntry.sign_out_time < next_day)
        if self.soldier_name and self.soldier_name.strip():
            pattern = _like_pattern(self.soldier_name.strip())
            full_name = (
                SignoutEntry.soldier_rank + " "
                + SignoutEntry.soldier_first_name + " "
                + SignoutEntry.soldier_last_name
            )
            conditions.append(
                or_(
                    SignoutEntry.soldier_first_name.ilike(pattern, escape="\\"),
                    SignoutEntry.soldier_last_name.ilike(pattern, escape="\\"),
                    full_name.ilike(pattern, escape="\\"),
                )
            )
        if self.location and self.location.strip():
            conditions.append(SignoutEntry.location.ilike(_like_pattern(self.location.strip()), escape="\\"))
        if self.status:
            conditions.append(SignoutEntry.status == SignoutStatus(self.status).value)
        return conditions


class SignoutEngine:
    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    # ========================================================================
    # Mutations
    # ========================================================================

    async def _allocate_id(self, now: datetime) -> str:
        for _ in range(MAX_ID_ATTEMPTS):
            signout_id = generate_signout_id(now)
            taken = await self.db.scalar(
                select(SignoutEntry.id).where(SignoutEntry.signout_id == signout_id).limit(1)
            )
            if taken is None:
                return signout_id
            log.warning("Sign-out id %s already in use, regenerating", signout_id)
        raise ConflictError("Could not allocate a sign-out id")

    async def create_event(
        self,
        persons: Sequence[PersonCreate],
        location: str,
        authorized_by: User,
        notes: Optional[str] = None,
    ) -> str:
        """
        Sign out one or more persons as a single event.

        All rows are inserted in one transaction; if any insert fails nothing
        of the event is stored.

        Returns:
            The new sign-out id

        Raises:
            ValidationError: no persons, blank location or a person without
                first/last name
            StorageError: the insert failed and was rolled back
        """
        persons = list(persons)
        if not persons:
            raise ValidationError("At least one soldier is required")
        location = (location or "").strip()
        if not location:
            raise ValidationError("Location is required")
        for person in persons:
            if not (person.first_name or "").strip() or not (person.last_name or "").strip():
                raise ValidationError("First and last name are required for each soldier")

        authorized_by_id = authorized_by.id
        authorized_by_name = authorized_by.display_name
        now = self.clock()
        signout_id = await self._allocate_id(now)

        rows = [
            SignoutEntry(
                signout_id=signout_id,
                soldier_rank=(person.rank or "").strip(),
                soldier_first_name=person.first_name.strip(),
                soldier_last_name=person.last_name.strip(),
                soldier_dod_id=(person.dod_id or "").strip() or None,
                location=location,
                sign_out_time=now,
                signed_out_by_id=authorized_by_id,
                signed_out_by_name=authorized_by_name,
                notes=(notes or "").strip(),
                status=SignoutStatus.OUT.value,
            )
            for person in persons
        ]

        async with transaction(self.db, "create_signout", signout_id=signout_id, soldiers=len(rows)):
            self.db.add_all(rows)

        log.info(
            "Sign-out %s created for %d soldier(s) to %r by %s",
            signout_id, len(rows), location, authorized_by_id,
        )
        return signout_id

    async def sign_in(self, signout_id: str, signed_in_by: User) -> SignInResult:
        """
        Move every row of an open event to IN.

        The UPDATE only matches rows still OUT, so of several concurrent calls
        exactly one succeeds. A closed or unknown event is reported in the
        result, not raised.
        """
        signed_in_by_id = signed_in_by.id
        signed_in_by_name = signed_in_by.display_name
        now = self.clock()

        async with transaction(self.db, "sign_in", signout_id=signout_id):
            result = await self.db.execute(
                update(SignoutEntry)
                .where(
                    SignoutEntry.signout_id == signout_id,
                    SignoutEntry.status == SignoutStatus.OUT.value,
                )
                .values(
                    status=SignoutStatus.IN.value,
                    sign_in_time=now,
                    signed_in_by_id=signed_in_by_id,
                    signed_in_by_name=signed_in_by_name,
                )
            )

        if result.rowcount == 0:
            exists = await self.db.scalar(
                select(SignoutEntry.id).where(SignoutEntry.signout_id == signout_id).limit(1)
            )
            if exists is None:
                reason = "No open sign-out found: sign-out does not exist"
            else:
                reason = "No open sign-out found: soldiers already signed in"
            log.info("Sign-in of %s rejected: %s", signout_id, reason)
            return SignInResult(success=False, reason=reason)

        log.info("Sign-out %s signed in (%d soldier(s)) by %s", signout_id, result.rowcount, signed_in_by_id)
        return SignInResult(success=True, reason="Soldiers signed in successfully", count=result.rowcount)

    # ========================================================================
    # Projections
    # ========================================================================

    async def _grouped(self, stmt) -> List[SignoutEvent]:
        result = await self.db.execute(stmt)
        return group_entries(result.scalars().all())

    async def get_by_id(self, signout_id: str) -> Optional[SignoutEvent]:
        events = await self._grouped(
            select(SignoutEntry)
            .where(SignoutEntry.signout_id == signout_id)
            .order_by(SignoutEntry.id)
        )
        return events[0] if events else None

    async def list_all(self) -> List[SignoutEvent]:
        """Full history, newest first."""
        return await self._grouped(
            select(SignoutEntry)
            .order_by(SignoutEntry.sign_out_time.desc(), SignoutEntry.signout_id, SignoutEntry.id)
        )

    async def list_open(self) -> List[SignoutEvent]:
        """Events still OUT, longest out first."""
        return await self._grouped(
            select(SignoutEntry)
            .where(SignoutEntry.status == SignoutStatus.OUT.value)
            .order_by(SignoutEntry.sign_out_time.asc(), SignoutEntry.signout_id, SignoutEntry.id)
        )

    async def list_overdue(self, out_for: timedelta) -> List[SignoutEvent]:
        """Open events signed out at least `out_for` ago, longest out first."""
        cutoff = self.clock() - out_for
        return await self._grouped(
            select(SignoutEntry)
            .where(
                SignoutEntry.status == SignoutStatus.OUT.value,
                SignoutEntry.sign_out_time <= cutoff,
            )
            .order_by(SignoutEntry.sign_out_time.asc(), SignoutEntry.signout_id, SignoutEntry.id)
        )

    async def list_filtered(self, criteria: SignoutFilter) -> List[SignoutEvent]:
        """
        Events with at least one row matching `criteria`, newest first.

        Matching selects events, not rows: each event is returned with all
        of its persons.
        """
        if criteria.is_empty():
            return await self.list_all()

        matching = select(SignoutEntry.signout_id).where(*criteria.conditions())
        return await self._grouped(
            select(SignoutEntry)
            .where(SignoutEntry.signout_id.in_(matching))
            .order_by(SignoutEntry.sign_out_time.desc(), SignoutEntry.signout_id, SignoutEntry.id)
        )

    async def list_by_ids(self, signout_ids: Sequence[str]) -> List[SignoutEvent]:
        if not signout_ids:
            return []
        return await self._grouped(
            select(SignoutEntry)
            .where(SignoutEntry.signout_id.in_(list(signout_ids)))
            .order_by(SignoutEntry.sign_out_time.desc(), SignoutEntry.signout_id, SignoutEntry.id)
        )

    async def list_records(self, criteria: SignoutFilter) -> List[SignoutEntry]:
        """Flat per-person rows matching `criteria`."""
        result = await self.db.execute(
            select(SignoutEntry)
            .where(*criteria.conditions())
            .order_by(
                SignoutEntry.sign_out_time.desc(),
                SignoutEntry.signout_id,
                SignoutEntry.soldier_last_name,
                SignoutEntry.soldier_first_name,
            )
        )
        return list(result.scalars().all())
