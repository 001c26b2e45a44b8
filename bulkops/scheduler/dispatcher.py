import asyncio
import logging
from typing import Optional
from uuid import UUID

from bulkops.domain.states import OperationStatus
from bulkops.scheduler.executor import OperationExecutor
from bulkops.settings import settings

logger = logging.getLogger(__name__)

class OperationDispatcher:
    """
    Fire-and-forget scheduling: one asyncio task per submitted operation,
    decoupled from the request that submitted it.

    A semaphore caps how many operations execute at once; operations beyond
    the cap wait for a slot while their record stays pending.
    """

    def __init__(self, executor: OperationExecutor, max_concurrent: Optional[int] = None):
        self.executor = executor
        self.max_concurrent = max_concurrent or settings.MAX_CONCURRENT_OPERATIONS
        self._semaphore = asyncio.Semaphore(self.max_concurrent)
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def dispatch(self, operation_id: UUID) -> asyncio.Task:
        task = asyncio.create_task(self._execute(operation_id), name=f"bulk-operation-{operation_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _execute(self, operation_id: UUID) -> None:
        async with self._semaphore:
            await self.executor.run(operation_id)

    async def start(self, batch_size: int = 100) -> int:
        """
        Re-dispatches operations that were submitted but never claimed
        (e.g. the process restarted before their task got a slot).
        """
        store = self.executor.store
        # Collect first: dispatched tasks claim records and would shift the pages
        pending_ids: list[UUID] = []
        offset = 0
        while True:
            page = await store.list_operations(
                status=OperationStatus.PENDING, limit=batch_size, offset=offset
            )
            pending_ids.extend(record.id for record in page)
            if len(page) < batch_size:
                break
            offset += batch_size

        for operation_id in reversed(pending_ids):
            self.dispatch(operation_id)

        logger.info(f"Operation dispatcher started ({len(pending_ids)} pending operations resumed).")
        return len(pending_ids)

    async def stop(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Operation dispatcher stopped.")

    async def wait_idle(self) -> None:
        """Waits until every dispatched operation has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
