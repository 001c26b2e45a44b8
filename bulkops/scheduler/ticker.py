import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from bulkops.api.v1.metrics import OPERATIONS_SWEPT, STALE_RUNNING
from bulkops.domain.models import utcnow
from bulkops.domain.states import TERMINAL_STATUSES
from bulkops.settings import settings
from bulkops.store.base import OperationStore

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class SweepResult:
    deleted: int
    stale_running: int
    cutoff: datetime

async def run_retention_sweep(
    store: OperationStore,
    now: Optional[datetime] = None,
    retention_days: Optional[int] = None,
    stale_after_seconds: Optional[int] = None,
) -> SweepResult:
    """
    Periodic maintenance:
    1. Delete terminal records that finished before the retention window.
    2. Count running records whose executor stopped writing progress.
       They are reported only; pending and running records are never deleted.
    """
    now = now or utcnow()
    retention_days = settings.RETENTION_DAYS if retention_days is None else retention_days
    stale_after_seconds = settings.STALE_RUNNING_SECONDS if stale_after_seconds is None else stale_after_seconds

    # 1. Retention
    cutoff = now - timedelta(days=retention_days)
    deleted = await store.purge(before=cutoff, statuses=TERMINAL_STATUSES)
    if deleted:
        OPERATIONS_SWEPT.inc(deleted)
        logger.info("Retention sweep deleted %d operations finished before %s", deleted, cutoff.isoformat())

    # 2. Stuck executors
    stale = await store.count_stale(before=now - timedelta(seconds=stale_after_seconds))
    STALE_RUNNING.set(stale)
    if stale:
        logger.warning(
            "%d running operations have not reported progress for %ss; manual intervention required",
            stale, stale_after_seconds,
        )

    return SweepResult(deleted=deleted, stale_running=stale, cutoff=cutoff)
