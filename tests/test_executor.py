import asyncio

from bulkops.domain.models import NewOperation
from bulkops.domain.states import OperationStatus
from bulkops.scheduler.dispatcher import OperationDispatcher
from bulkops.scheduler.executor import OperationExecutor
from bulkops.store import InMemoryOperationStore


class FlakyStore(InMemoryOperationStore):
    """Progress writes start failing after the first item."""

    def __init__(self):
        super().__init__()
        self.progress_calls = 0

    async def record_progress(self, operation_id, processed_items):
        self.progress_calls += 1
        if self.progress_calls > 1:
            raise RuntimeError("database connection lost")
        return await super().record_progress(operation_id, processed_items)


async def create(store, items=(1, 2, 3), name="activate"):
    return await store.create(NewOperation("widget", name, tuple(items), {}))


async def test_storage_failure_marks_operation_failed(world):
    store = FlakyStore()
    executor = OperationExecutor(store, world.registry(), item_delay=0)
    operation_id = await create(store)

    await executor.run(operation_id)

    record = await store.get(operation_id)
    assert record.status == OperationStatus.FAILED
    assert len(record.errors) == 1
    assert record.errors[0].item_id is None
    assert record.errors[0].error_message == "RuntimeError: database connection lost"
    assert record.can_rollback is False
    assert record.completed_at is not None
    # Both items whose handler ran are in the ledger, including the one whose progress write failed
    assert set(record.rollback_data) == {"1", "2"}
    assert world.calls == [1, 2]


async def test_unexpected_handler_exception_is_an_item_error(store, world):
    registry = world.registry()

    @registry.handler("widget", "boom")
    async def boom(item_id, options):
        if item_id == 2:
            raise ValueError("bad widget")
        return {"status": "inactive"}

    executor = OperationExecutor(store, registry, item_delay=0)
    operation_id = await create(store, name="boom")
    await executor.run(operation_id)

    record = await store.get(operation_id)
    assert record.status == OperationStatus.FAILED
    assert record.processed_items == 3
    assert [(e.item_id, e.error_message) for e in record.errors] == [(2, "ValueError: bad widget")]
    assert set(record.rollback_data) == {"1", "3"}


async def test_handler_removed_after_submit_is_a_system_failure(store, world):
    registry = world.registry()
    executor = OperationExecutor(store, registry, item_delay=0)
    operation_id = await create(store)
    registry._handlers.clear()

    await executor.run(operation_id)

    record = await store.get(operation_id)
    assert record.status == OperationStatus.FAILED
    assert record.errors[0].item_id is None
    assert record.errors[0].error_message.startswith("HandlerNotFoundError")
    assert world.calls == []


async def test_timeout_fails_operation(store, world):
    async def slow(item_id):
        await asyncio.sleep(1)

    world.before_item = slow
    executor = OperationExecutor(store, world.registry(), item_delay=0, timeout=0.05)
    operation_id = await create(store)

    await executor.run(operation_id)

    record = await store.get(operation_id)
    assert record.status == OperationStatus.FAILED
    assert "timed out" in record.errors[0].error_message
    assert record.processed_items == 0


async def test_timeout_keeps_work_done_before_it(store, world):
    async def hang_on_three(item_id):
        if item_id == 3:
            await asyncio.sleep(5)

    world.before_item = hang_on_three
    world.fail_on = {2}
    executor = OperationExecutor(store, world.registry(), item_delay=0, timeout=0.2)
    operation_id = await create(store, items=(1, 2, 3, 4))

    await executor.run(operation_id)

    record = await store.get(operation_id)
    assert record.status == OperationStatus.FAILED
    assert record.processed_items == 2
    assert [e.item_id for e in record.errors] == [2, None]
    assert "timed out" in record.errors[-1].error_message
    # Item 1 was changed and must stay traceable
    assert record.rollback_data == {"1": {"status": "inactive"}}
    assert record.can_rollback is False
    assert world.calls == [1, 2]


async def test_only_one_executor_claims(store, world):
    executor = OperationExecutor(store, world.registry(), item_delay=0)
    operation_id = await create(store)

    await asyncio.gather(executor.run(operation_id), executor.run(operation_id))

    assert world.calls == [1, 2, 3]
    assert (await store.get(operation_id)).status == OperationStatus.COMPLETED


async def test_run_ignores_finished_operation(store, world):
    executor = OperationExecutor(store, world.registry(), item_delay=0)
    operation_id = await create(store)
    await executor.run(operation_id)
    world.calls.clear()

    await executor.run(operation_id)
    assert world.calls == []


async def test_dispatcher_caps_concurrency(store, world):
    running = 0
    peak = 0
    release = asyncio.Event()

    async def hold(item_id):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await release.wait()
        running -= 1

    world.before_item = hold
    executor = OperationExecutor(store, world.registry(), item_delay=0)
    dispatcher = OperationDispatcher(executor, max_concurrent=2)

    ids = [await create(store, items=(n,)) for n in range(5)]
    for operation_id in ids:
        dispatcher.dispatch(operation_id)

    await asyncio.sleep(0.05)
    assert peak == 2
    statuses = [await store.get_status(i) for i in ids]
    assert statuses.count(OperationStatus.RUNNING) == 2
    assert statuses.count(OperationStatus.PENDING) == 3

    release.set()
    await dispatcher.wait_idle()
    assert peak == 2
    assert all([await store.get_status(i) == OperationStatus.COMPLETED for i in ids])
    assert dispatcher.active_count == 0
