import logging
from uuid import UUID

from bulkops.domain.errors import InvalidOperationStateError
from bulkops.domain.models import OperationRecord
from bulkops.domain.states import ACTIVE_STATUSES
from bulkops.store.base import OperationStore

logger = logging.getLogger(__name__)

async def cancel_operation(store: OperationStore, operation_id: UUID) -> OperationRecord:
    """
    Requests cooperative cancellation. Only flips the status; a running
    executor notices it before its next item.
    """
    record = await store.get(operation_id)
    if record.status not in ACTIVE_STATUSES:
        raise InvalidOperationStateError(record.status, "cancel")

    if not await store.cancel(operation_id):
        # Finished (or was cancelled) between the read and the update
        current = await store.get(operation_id)
        raise InvalidOperationStateError(current.status, "cancel")

    logger.info("Operation %s cancellation requested (was %s)", operation_id, record.status)
    return await store.get(operation_id)
