import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID

from bulkops.api.v1.metrics import (
    OPERATION_DURATION,
    OPERATION_ITEMS,
    OPERATIONS_FINISHED,
    OPERATIONS_RUNNING,
)
from bulkops.domain.errors import ItemError
from bulkops.domain.models import ItemFailure, OperationRecord
from bulkops.domain.states import OperationStatus
from bulkops.handlers.registry import HandlerRegistry
from bulkops.settings import settings
from bulkops.store.base import OperationStore

logger = logging.getLogger(__name__)


@dataclass
class RunLedger:
    """What one run has done so far. Kept on every exit path, not only on success."""

    errors: list[ItemFailure] = field(default_factory=list)
    rollback_data: dict[str, Any] = field(default_factory=dict)


class OperationExecutor:
    """
    Drains the item list of one operation.

    State machine: pending -> running -> completed | failed | cancelled.
    Items are processed strictly in order; a cancel request is observed before
    each item, so at most the item already in flight completes after it.
    """

    def __init__(
        self,
        store: OperationStore,
        registry: HandlerRegistry,
        item_delay: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.registry = registry
        self.item_delay = settings.ITEM_DELAY_SECONDS if item_delay is None else item_delay
        self.timeout = settings.OPERATION_TIMEOUT_SECONDS if timeout is None else timeout

    async def run(self, operation_id: UUID) -> None:
        """
        Entry point for the background task. Never raises: anything escaping
        the item loop marks the operation failed with one synthetic error entry
        appended to whatever the items already recorded.
        """
        ledger = RunLedger()
        try:
            await self._run(operation_id, ledger)
        except Exception as e:
            logger.error(f"Operation {operation_id} aborted by system failure: {e}", exc_info=True)
            await self._mark_failed(operation_id, f"{type(e).__name__}: {e}", ledger)

    async def _run(self, operation_id: UUID, ledger: RunLedger) -> None:
        # 1. Claim (exactly one executor wins)
        if not await self.store.claim(operation_id):
            logger.debug("Operation %s not claimable (already claimed or no longer pending)", operation_id)
            return

        record = await self.store.get(operation_id)
        logger.info(
            "Operation %s started: %s.%s on %d items",
            operation_id, record.operation_type, record.operation_name, record.total_items,
        )

        OPERATIONS_RUNNING.inc()
        started = time.monotonic()
        try:
            # 2. Process items
            if self.timeout:
                try:
                    await asyncio.wait_for(self._process(record, ledger), timeout=self.timeout)
                except asyncio.TimeoutError:
                    logger.warning("Operation %s exceeded %ss, marking failed", operation_id, self.timeout)
                    await self._mark_failed(
                        operation_id,
                        f"Operation timed out after {self.timeout} seconds",
                        ledger,
                        record.operation_type,
                    )
            else:
                await self._process(record, ledger)
        finally:
            OPERATIONS_RUNNING.dec()
            OPERATION_DURATION.observe(time.monotonic() - started)

    async def _process(self, record: OperationRecord, ledger: RunLedger) -> None:
        errors = ledger.errors
        rollback_data = ledger.rollback_data
        processed = 0

        for item_id in record.items:
            # Cooperative cancellation checkpoint
            status = await self.store.get_status(record.id)
            if status != OperationStatus.RUNNING:
                await self._stop_early(record, status, errors, rollback_data)
                return

            spec = self.registry.resolve(record.operation_type, record.operation_name)

            failure: Optional[str] = None
            try:
                snapshot = await spec.handler(item_id, dict(record.options))
            except ItemError as e:
                failure = str(e)
                logger.warning("Operation %s item %s failed: %s", record.id, item_id, e)
            except Exception as e:
                failure = f"{type(e).__name__}: {e}"
                logger.warning("Operation %s item %s raised: %s", record.id, item_id, e, exc_info=True)

            if failure is None:
                rollback_data[str(item_id)] = snapshot
            else:
                errors.append(ItemFailure(item_id=item_id, error_message=failure))
            OPERATION_ITEMS.labels(
                operation_type=record.operation_type,
                result="success" if failure is None else "error",
            ).inc()

            # Failed items still count as processed
            processed += 1
            await self.store.record_progress(record.id, processed)

            await asyncio.sleep(self.item_delay)

        # 3. Finalize
        final_status = OperationStatus.FAILED if errors else OperationStatus.COMPLETED
        can_rollback = final_status == OperationStatus.COMPLETED and bool(rollback_data)

        finalized = await self.store.finalize(
            record.id,
            status=final_status,
            errors=errors,
            rollback_data=rollback_data,
            can_rollback=can_rollback,
        )
        if not finalized:
            # Cancelled between the last item and now
            status = await self.store.get_status(record.id)
            await self._stop_early(record, status, errors, rollback_data)
            return

        OPERATIONS_FINISHED.labels(operation_type=record.operation_type, status=final_status).inc()
        logger.info(
            "Operation %s finished: status=%s processed=%d errors=%d can_rollback=%s",
            record.id, final_status, processed, len(errors), can_rollback,
        )

    async def _stop_early(
        self,
        record: OperationRecord,
        status: OperationStatus,
        errors: list[ItemFailure],
        rollback_data: dict[str, Any],
    ) -> None:
        if status == OperationStatus.CANCELLED:
            # Keep what was done so far for auditing; can_rollback stays false
            await self.store.record_partial(record.id, errors, rollback_data)
            OPERATIONS_FINISHED.labels(operation_type=record.operation_type, status=status).inc()
            logger.info(
                "Operation %s cancelled after %d items (%d errors)",
                record.id, len(rollback_data) + len(errors), len(errors),
            )
        else:
            logger.warning("Operation %s left running state unexpectedly (status=%s), stopping", record.id, status)

    async def _mark_failed(
        self,
        operation_id: UUID,
        message: str,
        ledger: RunLedger,
        operation_type: str = "unknown",
    ) -> None:
        try:
            if await self.store.fail(operation_id, message, ledger.errors, ledger.rollback_data):
                OPERATIONS_FINISHED.labels(operation_type=operation_type, status=OperationStatus.FAILED).inc()
            elif await self.store.get_status(operation_id) == OperationStatus.CANCELLED:
                # Cancel won the race; the work done is still kept for auditing
                await self.store.record_partial(operation_id, ledger.errors, ledger.rollback_data)
        except Exception as e:
            # Storage itself is down; the record stays running and shows up as stale
            logger.error(f"Could not mark operation {operation_id} failed: {e}", exc_info=True)
