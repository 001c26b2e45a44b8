import logging
from uuid import UUID

from bulkops.api.v1.metrics import ROLLBACKS
from bulkops.domain.errors import InvalidOperationStateError, RollbackError
from bulkops.domain.models import ItemFailure, OperationRecord
from bulkops.domain.states import OperationStatus
from bulkops.handlers.registry import HandlerRegistry
from bulkops.store.base import OperationStore

logger = logging.getLogger(__name__)

async def rollback_operation(
    store: OperationStore,
    registry: HandlerRegistry,
    operation_id: UUID,
) -> OperationRecord:
    """
    Writes every captured snapshot back through the type's restorer.

    Preconditions: the operation is completed and can_rollback is set.
    Single-shot: can_rollback is cleared before the first restore, so a
    concurrent or repeated call is rejected without touching any item.
    Restore failures are collected, not retried; any failure leaves the
    operation in rollback_failed. If recording the outcome fails, one more
    attempt records rollback_failed with a synthetic entry (item_id None).
    """
    record = await store.get(operation_id)
    if record.status != OperationStatus.COMPLETED or not record.can_rollback:
        raise InvalidOperationStateError(record.status, "roll back")

    # Raises HandlerNotFoundError before any state change
    restorer = registry.resolve_restorer(record.operation_type)

    if not await store.begin_rollback(operation_id):
        current = await store.get(operation_id)
        raise InvalidOperationStateError(current.status, "roll back")

    # Snapshots are keyed by str(item_id); hand restorers the original id
    original_ids = {str(item_id): item_id for item_id in record.items}

    rollback_errors: list[ItemFailure] = []
    for key, snapshot in record.rollback_data.items():
        item_id = original_ids.get(key, key)
        try:
            await restorer(item_id, snapshot)
        except RollbackError as e:
            rollback_errors.append(ItemFailure(item_id=item_id, error_message=str(e)))
            logger.warning("Rollback of operation %s item %s failed: %s", operation_id, item_id, e)
        except Exception as e:
            rollback_errors.append(ItemFailure(item_id=item_id, error_message=f"{type(e).__name__}: {e}"))
            logger.warning("Rollback of operation %s item %s raised: %s", operation_id, item_id, e, exc_info=True)

    final_status = OperationStatus.ROLLBACK_FAILED if rollback_errors else OperationStatus.ROLLED_BACK
    try:
        await store.finish_rollback(operation_id, status=final_status, rollback_errors=rollback_errors)
    except Exception as e:
        # can_rollback is already cleared; never leave the record completed and unrecoverable
        logger.error(f"Could not record rollback of operation {operation_id}: {e}", exc_info=True)
        final_status = OperationStatus.ROLLBACK_FAILED
        rollback_errors = [*rollback_errors, ItemFailure(item_id=None, error_message=f"{type(e).__name__}: {e}")]
        await store.finish_rollback(operation_id, status=final_status, rollback_errors=rollback_errors)

    ROLLBACKS.labels(result=final_status).inc()
    logger.info(
        "Operation %s rollback finished: status=%s restored=%d errors=%d",
        operation_id, final_status, len(record.rollback_data) - len(rollback_errors), len(rollback_errors),
    )
    return await store.get(operation_id)
