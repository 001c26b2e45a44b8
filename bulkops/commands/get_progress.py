from uuid import UUID

from bulkops.domain.models import OperationProgress
from bulkops.store.base import OperationStore

async def get_progress(store: OperationStore, operation_id: UUID) -> OperationProgress:
    """Read-only snapshot of an operation's counters and status."""
    record = await store.get(operation_id)
    return record.progress()
