from typing import Any, Awaitable, Callable, Optional

import pytest

from bulkops.db.session import build_engine, build_sessionmaker, create_all
from bulkops.domain.errors import ItemError, RollbackError
from bulkops.handlers.registry import HandlerRegistry
from bulkops.services.engine import BulkOperationEngine
from bulkops.store import InMemoryOperationStore, SqlOperationStore


class WidgetWorld:
    """
    Stand-in for the rows a real handler mutates. Widgets start inactive;
    handlers record every call so tests can assert exactly which items ran.
    """

    def __init__(self):
        self.state: dict[Any, str] = {}
        self.calls: list[Any] = []
        self.restored: list[Any] = []
        self.fail_on: set[Any] = set()
        self.restore_fail_on: set[Any] = set()
        # Awaited before (and after) each item; tests use them to cancel mid-run
        self.before_item: Optional[Callable[[Any], Awaitable[None]]] = None
        self.after_item: Optional[Callable[[Any], Awaitable[None]]] = None

    def status(self, item_id) -> str:
        return self.state.get(item_id, "inactive")

    def registry(self) -> HandlerRegistry:
        registry = HandlerRegistry()

        async def apply(item_id, new_status):
            if self.before_item:
                await self.before_item(item_id)
            self.calls.append(item_id)
            if item_id in self.fail_on:
                raise ItemError(f"Widget {item_id} is locked")
            snapshot = {"status": self.status(item_id)}
            self.state[item_id] = new_status
            if self.after_item:
                await self.after_item(item_id)
            return snapshot

        @registry.handler("widget", "activate")
        async def activate(item_id, options):
            return await apply(item_id, "active")

        @registry.handler("widget", "label", required_options=("label",))
        async def label(item_id, options):
            return await apply(item_id, options["label"])

        @registry.restorer("widget")
        async def restore(item_id, snapshot):
            if item_id in self.restore_fail_on:
                raise RollbackError(f"Widget {item_id} is gone")
            self.restored.append(item_id)
            self.state[item_id] = snapshot["status"]

        return registry


@pytest.fixture
def world():
    return WidgetWorld()


@pytest.fixture
def store():
    return InMemoryOperationStore()


@pytest.fixture
async def engine(store, world):
    engine = BulkOperationEngine(store, world.registry(), item_delay=0, max_concurrent=4, sweep_interval=3600)
    await engine.start(run_sweeper=False)
    yield engine
    await engine.stop()


@pytest.fixture
async def session_factory(tmp_path):
    db_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/bulkops-test.db")
    await create_all(bind=db_engine)
    yield build_sessionmaker(db_engine)
    await db_engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    return SqlOperationStore(session_factory)


@pytest.fixture(params=["memory", "sql"])
def any_store(request):
    return request.getfixturevalue("store" if request.param == "memory" else "sql_store")
