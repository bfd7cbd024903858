"""
Sign-out lifecycle tests.

Verifies:
- Event creation writes one row per person, all or nothing
- Sign-in moves a whole event to IN exactly once, also under concurrency
- Grouped projections, ordering and filters
"""
import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from app.core.database.engine import AsyncSessionLocal
from app.core.errors import DataIntegrityError, StorageError, ValidationError
from app.features.signouts.engine import SignoutEngine, SignoutFilter, generate_signout_id
from app.features.signouts.models import SignoutEntry, SignoutStatus
from app.features.signouts.projection import group_entries
from app.features.signouts.schemas import PersonCreate
from app.features.users.models import User


def person(first, last, rank="PVT", dod_id=None):
    return PersonCreate(rank=rank, first_name=first, last_name=last, dod_id=dod_id)


class FixedClock:
    """Clock returning a settable instant."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


# =============================================================================
# CREATE
# =============================================================================


class TestCreateEvent:

    async def test_group_signout_shares_one_header(self, db, operator):
        signout_id = await SignoutEngine(db).create_event(
            [person("John", "Doe", "PVT"), person("Jane", "Roe", "SPC")],
            "PX",
            operator,
        )

        event = await SignoutEngine(db).get_by_id(signout_id)
        assert event.soldier_count == 2
        assert event.status == SignoutStatus.OUT.value
        assert event.location == "PX"
        assert event.signed_out_by_name == "SSG Olive Operator"
        assert event.soldier_names == "PVT John Doe, SPC Jane Roe"
        assert event.sign_in_time is None

    async def test_id_format(self, db, operator):
        signout_id = await SignoutEngine(db).create_event([person("John", "Doe")], "PX", operator)

        assert signout_id.startswith("SO")
        assert len(signout_id) == len("SO251019-3FA2C1")

    async def test_blank_rank_is_omitted_from_names(self, db, operator):
        signout_id = await SignoutEngine(db).create_event(
            [person("John", "Doe", ""), person("Jane", "Roe", "SPC")], "Range", operator
        )

        event = await SignoutEngine(db).get_by_id(signout_id)
        assert event.soldier_names == "John Doe, SPC Jane Roe"

    async def test_empty_person_list_fails(self, db, operator):
        with pytest.raises(ValidationError):
            await SignoutEngine(db).create_event([], "PX", operator)

        assert await db.scalar(select(func.count()).select_from(SignoutEntry)) == 0

    async def test_blank_location_fails(self, db, operator):
        with pytest.raises(ValidationError):
            await SignoutEngine(db).create_event([person("John", "Doe")], "   ", operator)

    async def test_failed_insert_stores_nothing(self, db):
        # not in the users table, so the foreign key rejects every row
        ghost = User(id="01HZZZZZZZZZZZZZZZZZZZZZZZ", rank="SGT", full_name="Gus Ghost")

        with pytest.raises(StorageError) as exc_info:
            await SignoutEngine(db).create_event(
                [person("John", "Doe"), person("Jane", "Roe")], "PX", ghost
            )
        assert exc_info.value.operation == "create_signout"

        async with AsyncSessionLocal() as session:
            assert await session.scalar(select(func.count()).select_from(SignoutEntry)) == 0

    async def test_ids_are_unique(self, db, operator):
        engine = SignoutEngine(db)
        ids = {await engine.create_event([person("John", "Doe")], "PX", operator) for _ in range(5)}

        assert len(ids) == 5

    def test_generate_signout_id_uses_date(self):
        signout_id = generate_signout_id(datetime(2025, 3, 7, 12, 0, tzinfo=timezone.utc))

        assert signout_id.startswith("SO250307-")


# =============================================================================
# SIGN IN
# =============================================================================


class TestSignIn:

    async def test_sign_in_moves_every_row(self, db, operator, admin):
        signout_id = await SignoutEngine(db).create_event(
            [person("John", "Doe"), person("Jane", "Roe")], "PX", operator
        )

        result = await SignoutEngine(db).sign_in(signout_id, admin)

        assert result.success
        assert result.count == 2
        async with AsyncSessionLocal() as session:
            event = await SignoutEngine(session).get_by_id(signout_id)
        assert event.status == SignoutStatus.IN.value
        assert event.signed_in_by_name == "CPT Ada Admin"
        assert event.sign_in_time is not None
        assert event.soldier_count == 2

    async def test_second_sign_in_fails(self, db, operator):
        signout_id = await SignoutEngine(db).create_event([person("John", "Doe")], "PX", operator)
        engine = SignoutEngine(db)

        assert (await engine.sign_in(signout_id, operator)).success
        second = await engine.sign_in(signout_id, operator)

        assert not second.success
        assert "already signed in" in second.reason
        assert second.count == 0

    async def test_unknown_event(self, db, operator):
        result = await SignoutEngine(db).sign_in("SO000000-XXXXXX", operator)

        assert not result.success
        assert "does not exist" in result.reason

    async def test_concurrent_sign_in_succeeds_once(self, db, operator):
        signout_id = await SignoutEngine(db).create_event(
            [person("John", "Doe"), person("Jane", "Roe")], "PX", operator
        )

        async def attempt():
            async with AsyncSessionLocal() as session:
                return await SignoutEngine(session).sign_in(signout_id, operator)

        results = await asyncio.gather(attempt(), attempt())

        assert sorted(r.success for r in results) == [False, True]
        assert sum(r.count for r in results) == 2


# =============================================================================
# PROJECTIONS
# =============================================================================


class TestProjections:

    async def test_open_oldest_first_history_newest_first(self, db, operator):
        clock = FixedClock(datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc))
        engine = SignoutEngine(db, clock=clock)
        first = await engine.create_event([person("A", "One")], "PX", operator)
        clock.advance(hours=1)
        second = await engine.create_event([person("B", "Two")], "PX", operator)
        clock.advance(hours=1)
        third = await engine.create_event([person("C", "Three")], "PX", operator)
        await engine.sign_in(second, operator)

        assert [e.signout_id for e in await engine.list_open()] == [first, third]
        assert [e.signout_id for e in await engine.list_all()] == [third, second, first]

    async def test_name_filter_returns_whole_event(self, db, operator):
        engine = SignoutEngine(db)
        match = await engine.create_event(
            [person("John", "Doe"), person("Jane", "Roe")], "PX", operator
        )
        await engine.create_event([person("Max", "Payne")], "Gym", operator)

        events = await engine.list_filtered(SignoutFilter(soldier_name="roe"))

        assert [e.signout_id for e in events] == [match]
        assert events[0].soldier_count == 2

    async def test_name_filter_matches_rank_and_full_name(self, db, operator):
        engine = SignoutEngine(db)
        match = await engine.create_event([person("John", "Doe", "SGT")], "PX", operator)
        await engine.create_event([person("John", "Smith", "PVT")], "PX", operator)

        events = await engine.list_filtered(SignoutFilter(soldier_name="sgt john"))

        assert [e.signout_id for e in events] == [match]

    async def test_like_wildcards_are_literal(self, db, operator):
        engine = SignoutEngine(db)
        await engine.create_event([person("John", "Doe")], "PX", operator)

        assert await engine.list_filtered(SignoutFilter(soldier_name="%")) == []

    async def test_status_location_and_dates(self, db, operator):
        clock = FixedClock(datetime(2025, 3, 1, 23, 30, tzinfo=timezone.utc))
        engine = SignoutEngine(db, clock=clock)
        march_first = await engine.create_event([person("A", "One")], "Motor Pool", operator)
        clock.advance(days=2)
        march_third = await engine.create_event([person("B", "Two")], "PX", operator)
        await engine.sign_in(march_third, operator)

        on_first = await engine.list_filtered(
            SignoutFilter(start_date=date(2025, 3, 1), end_date=date(2025, 3, 1))
        )
        assert [e.signout_id for e in on_first] == [march_first]

        signed_in = await engine.list_filtered(SignoutFilter(status=SignoutStatus.IN))
        assert [e.signout_id for e in signed_in] == [march_third]

        motor_pool = await engine.list_filtered(SignoutFilter(location="motor"))
        assert [e.signout_id for e in motor_pool] == [march_first]

    async def test_list_by_ids(self, db, operator):
        engine = SignoutEngine(db)
        first = await engine.create_event([person("A", "One")], "PX", operator)
        await engine.create_event([person("B", "Two")], "PX", operator)

        assert [e.signout_id for e in await engine.list_by_ids([first, "SO000000-XXXXXX"])] == [first]
        assert await engine.list_by_ids([]) == []

    async def test_records_are_flat_and_sorted(self, db, operator):
        engine = SignoutEngine(db)
        await engine.create_event([person("Zed", "Zulu"), person("Amy", "Alpha")], "PX", operator)

        records = await engine.list_records(SignoutFilter())

        assert [r.soldier_last_name for r in records] == ["Alpha", "Zulu"]

    async def test_get_missing_event(self, db):
        assert await SignoutEngine(db).get_by_id("SO000000-XXXXXX") is None


class TestGrouping:

    def _row(self, **overrides):
        values = dict(
            signout_id="SO250301-AAAAAA",
            soldier_rank="PVT",
            soldier_first_name="John",
            soldier_last_name="Doe",
            soldier_dod_id=None,
            location="PX",
            sign_out_time=datetime(2025, 3, 1, 8, 0),
            signed_out_by_id="01HAAAAAAAAAAAAAAAAAAAAAAA",
            signed_out_by_name="SSG Olive Operator",
            notes="",
            status="OUT",
            sign_in_time=None,
            signed_in_by_id=None,
            signed_in_by_name=None,
        )
        values.update(overrides)
        return SignoutEntry(**values)

    def test_keeps_first_appearance_order(self):
        rows = [
            self._row(signout_id="SO2", soldier_last_name="A"),
            self._row(signout_id="SO1", soldier_last_name="B"),
            self._row(signout_id="SO2", soldier_last_name="C"),
        ]

        events = group_entries(rows)

        assert [e.signout_id for e in events] == ["SO2", "SO1"]
        assert [p.last_name for p in events[0].soldiers] == ["A", "C"]

    def test_diverging_header_raises(self):
        rows = [self._row(), self._row(status="IN", soldier_last_name="Roe")]

        with pytest.raises(DataIntegrityError) as exc_info:
            group_entries(rows)
        assert "status" in exc_info.value.message


class TestGateScenario:

    async def test_two_person_event_signed_in_by_another_user(self, db, operator, admin):
        engine = SignoutEngine(db)
        signout_id = await engine.create_event([person("John", "Doe"), person("Jane", "Roe")], "Gate 3", operator)

        event = await engine.get_by_id(signout_id)
        assert event.soldier_count == 2
        assert event.status == SignoutStatus.OUT.value

        first = await engine.sign_in(signout_id, admin)
        assert first.success

        async with AsyncSessionLocal() as session:
            event = await SignoutEngine(session).get_by_id(signout_id)
        assert event.status == SignoutStatus.IN.value
        assert event.soldier_count == 2

        second = await engine.sign_in(signout_id, admin)
        assert not second.success
        assert second.reason.startswith("No open sign-out found")
