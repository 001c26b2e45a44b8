import logging
from typing import Any, Optional, Sequence
from uuid import UUID

from bulkops.commands.cancel_operation import cancel_operation
from bulkops.commands.get_progress import get_progress
from bulkops.commands.rollback_operation import rollback_operation
from bulkops.commands.submit_operation import submit_operation
from bulkops.domain.models import OperationProgress, OperationRecord
from bulkops.domain.states import OperationStatus
from bulkops.handlers.registry import HandlerRegistry
from bulkops.scheduler.dispatcher import OperationDispatcher
from bulkops.scheduler.executor import OperationExecutor
from bulkops.scheduler.service import SweeperService
from bulkops.store.base import OperationStore

logger = logging.getLogger(__name__)


class BulkOperationEngine:
    """
    Wires the store, handler registry, executor, dispatcher and sweeper
    together and exposes the operations the administrative layer calls.
    """

    def __init__(
        self,
        store: OperationStore,
        registry: HandlerRegistry,
        item_delay: Optional[float] = None,
        max_concurrent: Optional[int] = None,
        operation_timeout: Optional[float] = None,
        sweep_interval: Optional[int] = None,
    ):
        self.store = store
        self.registry = registry
        self.executor = OperationExecutor(store, registry, item_delay=item_delay, timeout=operation_timeout)
        self.dispatcher = OperationDispatcher(self.executor, max_concurrent=max_concurrent)
        self.sweeper = SweeperService(store, interval=sweep_interval)

    async def start(self, run_sweeper: bool = True) -> None:
        await self.dispatcher.start()
        if run_sweeper:
            await self.sweeper.start()

    async def stop(self) -> None:
        await self.sweeper.stop()
        await self.dispatcher.stop()
        await self.store.close()

    async def submit(
        self,
        operation_type: str,
        operation_name: str,
        items: Sequence[Any],
        options: Optional[dict[str, Any]] = None,
        owner: Optional[str] = None,
    ) -> UUID:
        return await submit_operation(
            self.store,
            self.registry,
            self.dispatcher,
            operation_type=operation_type,
            operation_name=operation_name,
            items=items,
            options=options,
            owner=owner,
        )

    async def get_progress(self, operation_id: UUID) -> OperationProgress:
        return await get_progress(self.store, operation_id)

    async def get(self, operation_id: UUID) -> OperationRecord:
        return await self.store.get(operation_id)

    async def cancel(self, operation_id: UUID) -> OperationRecord:
        return await cancel_operation(self.store, operation_id)

    async def rollback(self, operation_id: UUID) -> OperationRecord:
        return await rollback_operation(self.store, self.registry, operation_id)

    async def list_recent(
        self,
        status: Optional[OperationStatus] = None,
        owner: Optional[str] = None,
        operation_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[OperationRecord]:
        return await self.store.list_operations(
            status=status,
            owner=owner,
            operation_type=operation_type,
            limit=limit,
            offset=offset,
        )

    async def wait_idle(self) -> None:
        await self.dispatcher.wait_idle()
