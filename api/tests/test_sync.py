"""Sync state machine and calendar reconciliation tests."""

from datetime import UTC, date, datetime, time
from types import SimpleNamespace

import pytest

from venuebook.models import Reservation, SyncStatus
from venuebook.services import sync_state
from venuebook.services.calendar_adapter import CalendarError, EventIds
from venuebook.services.leases import LocalRunLock
from venuebook.services.reconciliation import CREATED, FAILED, UPDATED, ReconciliationEngine
from venuebook.services.sync_state import SyncTransitionError

MONDAY = date(2026, 3, 16)
TODAY = date(2026, 3, 15)
AT = datetime(2026, 3, 15, 1, 0, tzinfo=UTC)


class FakeCalendar:
    """Stands in for ExternalCalendarAdapter; events keyed by their public id."""

    def __init__(self):
        self.events: dict[str, int] = {}
        self.calls: list[tuple[str, int | str]] = []
        self.failing: set[int] = set()
        self.fail_deletes = False

    def _ids(self, reservation_id):
        return EventIds(f"pub-{reservation_id}", f"priv-{reservation_id}")

    async def create(self, event):
        self.calls.append(("create", event.reservation_id))
        if event.reservation_id in self.failing:
            raise CalendarError("Calendar insert failed (500)", 500)
        ids = self._ids(event.reservation_id)
        self.events[ids.public_event_id] = event.reservation_id
        return ids

    async def update(self, ids, event):
        self.calls.append(("update", event.reservation_id))
        if event.reservation_id in self.failing:
            raise CalendarError("Calendar update failed (500)", 500)
        return ids

    async def delete(self, ids):
        self.calls.append(("delete", ids.public_event_id))
        if self.fail_deletes:
            raise CalendarError("Calendar delete failed (503)", 503)
        self.events.pop(ids.public_event_id, None)
        return True


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def run_lock():
    return LocalRunLock(lease_seconds=60)


@pytest.fixture
def engine(session_factory, calendar, run_lock, clock):
    return ReconciliationEngine(session_factory, calendar, run_lock, clock=clock)


async def _load(session_factory, reservation_id):
    async with session_factory() as db:
        return await db.get(Reservation, reservation_id)


def _record(status, public=None, private=None):
    return SimpleNamespace(
        sync_status=status,
        external_public_event_id=public,
        external_private_event_id=private,
        last_sync_attempt_at=None,
    )


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class TestTransitions:
    @pytest.mark.parametrize(
        "current, target",
        [
            (SyncStatus.PENDING, SyncStatus.SYNCED),
            (SyncStatus.PENDING, SyncStatus.FAILED),
            (SyncStatus.FAILED, SyncStatus.PENDING),
            (SyncStatus.SYNCED, SyncStatus.PENDING),
        ],
    )
    def test_allowed(self, current, target):
        record = _record(current)
        sync_state.transition(record, target)
        assert record.sync_status == target

    @pytest.mark.parametrize(
        "current, target",
        [
            (SyncStatus.FAILED, SyncStatus.SYNCED),
            (SyncStatus.SYNCED, SyncStatus.FAILED),
        ],
    )
    def test_rejected(self, current, target):
        record = _record(current)
        with pytest.raises(SyncTransitionError):
            sync_state.transition(record, target)
        assert record.sync_status == current

    def test_retry_goes_through_pending(self):
        record = _record(SyncStatus.FAILED)
        sync_state.begin_attempt(record, AT)
        sync_state.record_success(record, "pub-1", None, AT)
        assert record.sync_status == SyncStatus.SYNCED
        assert record.external_public_event_id == "pub-1"

    def test_failure_keeps_ids(self):
        record = _record(SyncStatus.PENDING, "pub-1", "priv-1")
        sync_state.record_failure(record, AT)
        assert record.sync_status == SyncStatus.FAILED
        assert (record.external_public_event_id, record.external_private_event_id) == ("pub-1", "priv-1")
        assert record.last_sync_attempt_at == AT

    def test_clear_external_ids(self):
        record = _record(SyncStatus.PENDING, "pub-1", "priv-1")
        sync_state.clear_external_ids(record, AT)
        assert record.sync_status == SyncStatus.PENDING
        assert record.external_public_event_id is None
        assert record.external_private_event_id is None

    def test_mark_dirty_synced(self):
        record = _record(SyncStatus.SYNCED, "pub-1")
        sync_state.mark_dirty(record)
        assert record.sync_status == SyncStatus.PENDING
        assert record.external_public_event_id == "pub-1"


# ---------------------------------------------------------------------------
# Reconciliation passes
# ---------------------------------------------------------------------------


async def test_pass_creates_then_leaves_synced_alone(engine, manager, seed, calendar, session_factory):
    first = await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(10, 0), 60)
    second = await manager.reserve_single(seed.vip.id, seed.training.id, MONDAY, time(11, 0), 60)

    report = await engine.run_pass()

    assert report.created == 2
    assert report.failed == 0
    for reservation in (first, second):
        stored = await _load(session_factory, reservation.id)
        assert stored.sync_status == SyncStatus.SYNCED
        assert stored.external_public_event_id == f"pub-{reservation.id}"
        assert stored.external_private_event_id == f"priv-{reservation.id}"
        assert stored.last_sync_attempt_at is not None

    calendar.calls.clear()
    again = await engine.run_pass()
    assert again.created == again.updated == 0
    assert calendar.calls == []


async def test_force_resync_updates_existing_events(engine, manager, seed, calendar, session_factory):
    reservation = await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(10, 0), 60)
    await engine.run_pass()
    calendar.calls.clear()

    report = await engine.force_resync()

    assert report.updated == 1
    assert calendar.calls == [("update", reservation.id)]
    stored = await _load(session_factory, reservation.id)
    assert stored.sync_status == SyncStatus.SYNCED
    assert stored.external_public_event_id == f"pub-{reservation.id}"


async def test_one_failure_does_not_stop_the_batch(engine, manager, seed, calendar, session_factory):
    broken = await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(10, 0), 60)
    fine = await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(12, 0), 60)
    calendar.failing.add(broken.id)

    report = await engine.run_pass()

    assert (report.created, report.failed) == (1, 1)
    assert (await _load(session_factory, broken.id)).sync_status == SyncStatus.FAILED
    assert (await _load(session_factory, fine.id)).sync_status == SyncStatus.SYNCED

    # Retried on the next pass
    calendar.failing.clear()
    retry = await engine.run_pass()
    assert retry.created == 1
    stored = await _load(session_factory, broken.id)
    assert stored.sync_status == SyncStatus.SYNCED
    assert stored.external_public_event_id == f"pub-{broken.id}"


async def test_failed_update_keeps_event_ids(engine, manager, seed, calendar, session_factory):
    reservation = await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(10, 0), 60)
    await engine.run_pass()
    calendar.failing.add(reservation.id)

    report = await engine.force_resync()

    assert report.failed == 1
    stored = await _load(session_factory, reservation.id)
    assert stored.sync_status == SyncStatus.FAILED
    assert stored.external_public_event_id == f"pub-{reservation.id}"


async def test_sync_one_outcomes(engine, manager, seed, calendar, session_factory):
    reservation = await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(10, 0), 60)

    async with session_factory() as db:
        (loaded,) = await sync_state.select_pending_or_failed(db)
        assert await engine.sync_one(db, loaded) == CREATED
        assert await engine.sync_one(db, loaded) == UPDATED
        await db.commit()

    assert loaded.id == reservation.id
    assert loaded.sync_status == SyncStatus.SYNCED
    assert calendar.calls == [("create", reservation.id), ("update", reservation.id)]


async def test_sync_one_unloaded_reservation_fails_softly(engine, manager, seed, session_factory):
    reservation = await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(10, 0), 60)

    async with session_factory() as db:
        # Court and user not loaded: building the event raises, the item is marked failed
        loaded = await db.get(Reservation, reservation.id)
        assert await engine.sync_one(db, loaded) == FAILED
        assert loaded.sync_status == SyncStatus.FAILED


async def test_sync_today_covers_only_today(engine, manager, seed, calendar):
    today = await manager.reserve_single(seed.member.id, seed.solo.id, TODAY, time(12, 0), 60)
    await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(12, 0), 60)

    report = await engine.sync_today()

    assert report.created == 1
    assert calendar.calls == [("create", today.id)]


async def test_sync_month_window(engine, manager, seed, calendar):
    await manager.reserve_single(seed.member.id, seed.solo.id, TODAY, time(12, 0), 60)
    await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(12, 0), 60)

    report = await engine.sync_month()
    assert report.created == 2


async def test_pass_skipped_while_another_runs(engine, manager, seed, calendar, run_lock):
    await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(10, 0), 60)
    token = await run_lock.acquire()

    report = await engine.run_pass()

    assert report.skipped
    assert calendar.calls == []
    await run_lock.release(token)
    assert (await engine.run_pass()).created == 1


async def test_lock_released_after_pass(engine, run_lock):
    await engine.run_pass()
    assert not run_lock.held


# ---------------------------------------------------------------------------
# Tombstone sweep
# ---------------------------------------------------------------------------


async def test_sweep_deletes_cancelled_events_once(engine, manager, seed, calendar, session_factory):
    reservation = await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(10, 0), 60)
    await engine.run_pass()
    await manager.cancel(reservation.id, seed.member.id)

    report = await engine.sweep_cancelled()

    assert report.deleted == 1
    assert calendar.events == {}
    stored = await _load(session_factory, reservation.id)
    assert stored.external_public_event_id is None
    assert stored.external_private_event_id is None
    assert stored.sync_status == SyncStatus.PENDING

    calendar.calls.clear()
    assert (await engine.sweep_cancelled()).deleted == 0
    assert calendar.calls == []


async def test_sweep_runs_after_push_in_a_pass(engine, manager, seed, calendar):
    cancelled = await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(10, 0), 60)
    await engine.run_pass()
    await manager.cancel(cancelled.id, seed.member.id)
    kept = await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(12, 0), 60)

    report = await engine.run_pass()

    assert (report.created, report.deleted) == (1, 1)
    assert list(calendar.events.values()) == [kept.id]


async def test_failed_delete_keeps_ids_for_retry(engine, manager, seed, calendar, session_factory):
    reservation = await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(10, 0), 60)
    await engine.run_pass()
    await manager.cancel(reservation.id, seed.member.id)
    calendar.fail_deletes = True

    report = await engine.sweep_cancelled()

    assert report.delete_failed == 1
    stored = await _load(session_factory, reservation.id)
    assert stored.sync_status == SyncStatus.FAILED
    assert stored.external_public_event_id == f"pub-{reservation.id}"

    calendar.fail_deletes = False
    assert (await engine.sweep_cancelled()).deleted == 1
    assert (await _load(session_factory, reservation.id)).external_public_event_id is None


async def test_never_synced_cancellation_is_not_swept(engine, manager, seed, calendar):
    reservation = await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(10, 0), 60)
    await manager.cancel(reservation.id, seed.member.id)

    report = await engine.run_pass()

    assert report.deleted == 0
    assert calendar.calls == []


async def test_sync_stats(engine, manager, seed, calendar, session_factory):
    broken = await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(10, 0), 60)
    await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(12, 0), 60)
    calendar.failing.add(broken.id)
    await engine.run_pass()
    await manager.reserve_single(seed.member.id, seed.solo.id, MONDAY, time(14, 0), 60)

    async with session_factory() as db:
        stats = await sync_state.sync_stats(db)

    assert stats == {"pending": 1, "synced": 1, "failed": 1, "total": 3}
