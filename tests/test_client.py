import asyncio

import pytest
from httpx import ASGITransport

from bulkops.main import create_app
from bulkops_client import OperationsClient, OperationsClientError


@pytest.fixture
async def ops(engine):
    app = create_app(engine)
    async with OperationsClient("http://test", owner="admin", transport=ASGITransport(app=app)) as client:
        yield client


async def test_submit_and_wait(ops, world):
    operation_id = await ops.submit("widget", "activate", [1, 2])

    progress = await ops.wait_for(operation_id, interval=0.01, timeout=5)
    assert progress["status"] == "completed"
    assert progress["processed_items"] == 2

    record = await ops.get(operation_id)
    assert record["owner"] == "admin"
    assert record["can_rollback"] is True

    record = await ops.rollback(operation_id)
    assert record["status"] == "rolled_back"
    assert world.state == {1: "inactive", 2: "inactive"}


async def test_errors_carry_status_and_detail(ops):
    with pytest.raises(OperationsClientError) as exc:
        await ops.submit("widget", "explode", [1])
    assert exc.value.status_code == 422
    assert "explode" in exc.value.detail


async def test_cancel_and_list(ops, engine, world):
    gate = asyncio.Event()

    async def hold(item_id):
        await gate.wait()

    world.before_item = hold
    operation_id = await ops.submit("widget", "activate", [1, 2, 3], owner="ops-team")
    record = await ops.cancel(operation_id)
    assert record["status"] == "cancelled"
    gate.set()
    await engine.wait_idle()

    listed = await ops.list(owner="ops-team")
    assert [op["id"] for op in listed] == [str(operation_id)]
    assert await ops.list(status="completed") == []

    with pytest.raises(OperationsClientError) as exc:
        await ops.rollback(operation_id)
    assert exc.value.status_code == 409


async def test_operation_types(ops):
    types = await ops.operation_types()
    assert {(t["operation_type"], t["operation_name"]) for t in types} == {("widget", "activate"), ("widget", "label")}


async def test_wait_for_times_out(ops, world):
    gate = asyncio.Event()

    async def hold(item_id):
        await gate.wait()

    world.before_item = hold
    operation_id = await ops.submit("widget", "activate", [1])

    with pytest.raises(TimeoutError):
        await ops.wait_for(operation_id, interval=0.01, timeout=0.05)
    gate.set()
