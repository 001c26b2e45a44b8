import pytest

from bulkops.domain.errors import (
    HandlerNotFoundError,
    InvalidOperationStateError,
    ItemError,
    OperationNotFoundError,
    ValidationError,
)
from bulkops.domain.models import ItemFailure
from bulkops.domain.states import OperationStatus
from bulkops.services.engine import BulkOperationEngine
from bulkops.store import InMemoryOperationStore


async def run(engine, *args, **kwargs):
    operation_id = await engine.submit(*args, **kwargs)
    await engine.wait_idle()
    return await engine.get(operation_id)


class RollbackWriteFailsOnceStore(InMemoryOperationStore):
    """The first attempt to record a rollback outcome fails."""

    def __init__(self):
        super().__init__()
        self.finish_attempts = 0

    async def finish_rollback(self, operation_id, status, rollback_errors):
        self.finish_attempts += 1
        if self.finish_attempts == 1:
            raise RuntimeError("database connection lost")
        await super().finish_rollback(operation_id, status, rollback_errors)


async def test_all_items_succeed(engine, world):
    record = await run(engine, "widget", "activate", [1, 2, 3])

    assert record.status == OperationStatus.COMPLETED
    assert record.processed_items == 3
    assert record.total_items == 3
    assert record.progress_percentage == 100.0
    assert record.errors == []
    assert record.can_rollback is True
    assert set(record.rollback_data) == {"1", "2", "3"}
    assert record.completed_at is not None
    assert world.calls == [1, 2, 3]


async def test_one_failing_item_fails_the_operation(engine, world):
    world.fail_on = {2}
    record = await run(engine, "widget", "activate", [1, 2, 3])

    assert record.status == OperationStatus.FAILED
    assert record.processed_items == 3
    assert [e.item_id for e in record.errors] == [2]
    assert "locked" in record.errors[0].error_message
    assert record.can_rollback is False
    # Items after the failure still ran
    assert world.calls == [1, 2, 3]
    assert world.status(3) == "active"


async def test_submit_returns_before_processing(engine, world):
    operation_id = await engine.submit("widget", "activate", [1, 2, 3])

    progress = await engine.get_progress(operation_id)
    assert progress.status == OperationStatus.PENDING
    assert progress.processed_items == 0
    assert world.calls == []

    await engine.wait_idle()
    assert (await engine.get_progress(operation_id)).status == OperationStatus.COMPLETED


async def test_unregistered_operation_is_rejected_without_record(engine, store):
    with pytest.raises(ValidationError):
        await engine.submit("widget", "explode", [1, 2, 3])
    with pytest.raises(ValidationError):
        await engine.submit("gadget", "activate", [1])

    assert await store.list_operations() == []


@pytest.mark.parametrize("items", [[], "123", [1, None], [True], ["  "], {"a": 1}])
async def test_invalid_items_are_rejected(engine, store, items):
    with pytest.raises(ValidationError):
        await engine.submit("widget", "activate", items)
    assert await store.list_operations() == []


async def test_missing_required_option_is_rejected(engine, store):
    with pytest.raises(ValidationError, match="label"):
        await engine.submit("widget", "label", [1], options={"label": ""})
    assert await store.list_operations() == []

    record = await run(engine, "widget", "label", [1], options={"label": "shiny"})
    assert record.status == OperationStatus.COMPLETED
    assert record.options == {"label": "shiny"}


async def test_item_limit(engine, monkeypatch):
    from bulkops.settings import settings
    monkeypatch.setattr(settings, "MAX_ITEMS_PER_OPERATION", 2)

    with pytest.raises(ValidationError, match="Too many items"):
        await engine.submit("widget", "activate", [1, 2, 3])


async def test_duplicate_items_run_once(engine, world):
    record = await run(engine, "widget", "activate", [1, 2, 1, "x", "x"])

    assert record.items == (1, 2, "x")
    assert record.total_items == 3
    assert world.calls == [1, 2, "x"]


async def test_ids_equal_as_strings_are_one_item(engine, world):
    record = await run(engine, "widget", "activate", [1, "1", 2])

    assert record.items == (1, 2)
    assert record.total_items == 2
    assert world.calls == [1, 2]
    assert set(record.rollback_data) == {"1", "2"}

    await engine.rollback(record.id)
    assert world.restored == [1, 2]
    assert world.status(1) == "inactive"


async def test_bad_option_value_is_rejected_at_submit(store, world):
    registry = world.registry()

    def check_colour(options):
        if options["colour"] not in ("red", "blue"):
            raise ItemError(f"Unknown colour: {options['colour']}")

    @registry.handler("widget", "paint", required_options=("colour",), option_validator=check_colour)
    async def paint(item_id, options):
        return {"status": "inactive"}

    engine = BulkOperationEngine(store, registry, item_delay=0)
    await engine.start(run_sweeper=False)
    try:
        with pytest.raises(ValidationError, match="Unknown colour: green"):
            await engine.submit("widget", "paint", [1, 2], options={"colour": "green"})
        assert await store.list_operations() == []

        record = await run(engine, "widget", "paint", [1, 2], options={"colour": "red"})
        assert record.status == OperationStatus.COMPLETED
    finally:
        await engine.stop()


async def test_progress_is_monotonic_and_bounded(engine, store, world):
    seen = []
    operation_id = None

    async def observe(item_id):
        record = await store.get(operation_id)
        seen.append((record.processed_items, record.progress_percentage))

    world.before_item = observe
    operation_id = await engine.submit("widget", "activate", [1, 2, 3])
    await engine.wait_idle()

    assert seen == [(0, 0.0), (1, 33.33), (2, 66.67)]
    final = await engine.get_progress(operation_id)
    assert (final.processed_items, final.progress_percentage) == (3, 100.0)


async def test_cancel_mid_run_stops_after_in_flight_item(engine, world):
    operation_id = None

    async def cancel_at_eleven(item_id):
        # Item 10 has been processed and counted
        if item_id == 11:
            await engine.cancel(operation_id)

    world.before_item = cancel_at_eleven
    operation_id = await engine.submit("widget", "activate", list(range(1, 101)))
    await engine.wait_idle()

    record = await engine.get(operation_id)
    assert record.status == OperationStatus.CANCELLED
    assert 10 <= record.processed_items <= 11
    # Item 11 was already in flight; nothing after it ran
    assert world.calls == list(range(1, 12))
    assert record.can_rollback is False
    # Partial ledger kept for auditing, including the in-flight item
    assert len(record.rollback_data) == 11


async def test_cancel_during_item_freezes_counter(engine, world):
    operation_id = None

    async def cancel_inside_ten(item_id):
        if item_id == 10:
            await engine.cancel(operation_id)

    world.after_item = cancel_inside_ten
    operation_id = await engine.submit("widget", "activate", list(range(1, 101)))
    await engine.wait_idle()

    record = await engine.get(operation_id)
    assert record.status == OperationStatus.CANCELLED
    # Counters only move while running; the ledger still has item 10
    assert record.processed_items == 9
    assert world.calls == list(range(1, 11))
    assert len(record.rollback_data) == 10


async def test_cancel_while_pending_never_runs_handler(engine, world):
    operation_id = await engine.submit("widget", "activate", [1, 2, 3])
    record = await engine.cancel(operation_id)
    assert record.status == OperationStatus.CANCELLED

    await engine.wait_idle()
    record = await engine.get(operation_id)
    assert record.status == OperationStatus.CANCELLED
    assert record.processed_items == 0
    assert record.errors == []
    assert record.rollback_data == {}
    assert world.calls == []


async def test_cancel_finished_operation_is_rejected(engine):
    record = await run(engine, "widget", "activate", [1])
    with pytest.raises(InvalidOperationStateError):
        await engine.cancel(record.id)
    assert (await engine.get(record.id)).status == OperationStatus.COMPLETED


async def test_rollback_restores_snapshots(engine, world):
    world.state[2] = "suspended"
    record = await run(engine, "widget", "activate", [1, 2, 3])
    assert world.state == {1: "active", 2: "active", 3: "active"}

    record = await engine.rollback(record.id)

    assert record.status == OperationStatus.ROLLED_BACK
    assert record.can_rollback is False
    assert record.rolled_back_at is not None
    assert record.rollback_errors == []
    assert sorted(world.restored) == [1, 2, 3]
    assert world.state == {1: "inactive", 2: "suspended", 3: "inactive"}


async def test_rollback_passes_original_item_ids(engine, world):
    record = await run(engine, "widget", "activate", [7, "abc"])
    await engine.rollback(record.id)
    assert sorted(world.restored, key=str) == [7, "abc"]


async def test_second_rollback_is_rejected(engine, world):
    record = await run(engine, "widget", "activate", [1, 2, 3])
    await engine.rollback(record.id)
    world.restored.clear()

    with pytest.raises(InvalidOperationStateError):
        await engine.rollback(record.id)
    assert world.restored == []
    assert (await engine.get(record.id)).status == OperationStatus.ROLLED_BACK


async def test_rollback_of_failed_operation_is_rejected(engine, world):
    world.fail_on = {2}
    record = await run(engine, "widget", "activate", [1, 2, 3])

    with pytest.raises(InvalidOperationStateError):
        await engine.rollback(record.id)
    after = await engine.get(record.id)
    assert after.status == OperationStatus.FAILED
    assert after.rolled_back_at is None
    assert world.restored == []


async def test_partial_rollback_failure(engine, world):
    record = await run(engine, "widget", "activate", [1, 2, 3])
    world.restore_fail_on = {2}

    record = await engine.rollback(record.id)

    assert record.status == OperationStatus.ROLLBACK_FAILED
    assert [e.item_id for e in record.rollback_errors] == [2]
    assert record.rolled_back_at is not None
    assert sorted(world.restored) == [1, 3]


async def test_rollback_outcome_write_failure_ends_rollback_failed(world):
    store = RollbackWriteFailsOnceStore()
    engine = BulkOperationEngine(store, world.registry(), item_delay=0)
    await engine.start(run_sweeper=False)
    try:
        record = await run(engine, "widget", "activate", [1, 2])

        record = await engine.rollback(record.id)

        assert record.status == OperationStatus.ROLLBACK_FAILED
        assert record.can_rollback is False
        assert record.rollback_errors == [ItemFailure(None, "RuntimeError: database connection lost")]
        assert sorted(world.restored) == [1, 2]
        assert store.finish_attempts == 2
    finally:
        await engine.stop()


async def test_rollback_without_restorer_leaves_record_untouched(store, world):
    registry = world.registry()
    registry._restorers.clear()
    engine = BulkOperationEngine(store, registry, item_delay=0)
    await engine.start(run_sweeper=False)
    try:
        record = await run(engine, "widget", "activate", [1])
        with pytest.raises(HandlerNotFoundError):
            await engine.rollback(record.id)
        after = await engine.get(record.id)
        assert after.status == OperationStatus.COMPLETED
        assert after.can_rollback is True
    finally:
        await engine.stop()


async def test_unknown_operation_id(engine):
    from uuid import uuid4

    missing = uuid4()
    with pytest.raises(OperationNotFoundError):
        await engine.get_progress(missing)
    with pytest.raises(OperationNotFoundError):
        await engine.cancel(missing)
    with pytest.raises(OperationNotFoundError):
        await engine.rollback(missing)


async def test_pending_operations_resume_on_start(store, world):
    from bulkops.domain.models import NewOperation

    operation_id = await store.create(NewOperation("widget", "activate", (1, 2), {}))
    engine = BulkOperationEngine(store, world.registry(), item_delay=0)
    await engine.start(run_sweeper=False)
    try:
        await engine.wait_idle()
        assert (await engine.get(operation_id)).status == OperationStatus.COMPLETED
        assert world.calls == [1, 2]
    finally:
        await engine.stop()


async def test_list_recent_filters(engine):
    first = await run(engine, "widget", "activate", [1], owner="alice")
    second = await run(engine, "widget", "activate", [2], owner="bob")

    everything = await engine.list_recent()
    assert [r.id for r in everything] == [second.id, first.id]
    assert [r.id for r in await engine.list_recent(owner="alice")] == [first.id]
    assert await engine.list_recent(status=OperationStatus.FAILED) == []
    assert len(await engine.list_recent(limit=1)) == 1
