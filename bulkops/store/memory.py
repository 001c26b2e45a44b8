import asyncio
import copy
from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID, uuid4

from bulkops.domain.errors import OperationConflictError, OperationNotFoundError
from bulkops.domain.models import (
    ItemFailure,
    NewOperation,
    OperationRecord,
    compute_progress,
    utcnow,
)
from bulkops.domain.states import ACTIVE_STATUSES, OperationStatus, TERMINAL_STATUSES
from bulkops.store.base import OperationStore, check_updatable


class InMemoryOperationStore(OperationStore):
    """
    Process-local store. Every read returns a copy taken under the lock, so a
    reader can never observe a record in the middle of a transition.
    """

    def __init__(self):
        self._records: dict[UUID, OperationRecord] = {}
        self._lock = asyncio.Lock()

    def _require(self, operation_id: UUID) -> OperationRecord:
        record = self._records.get(operation_id)
        if record is None:
            raise OperationNotFoundError(operation_id)
        return record

    async def create(self, spec: NewOperation) -> UUID:
        now = utcnow()
        record = OperationRecord(
            id=uuid4(),
            operation_type=spec.operation_type,
            operation_name=spec.operation_name,
            items=tuple(spec.items),
            options=dict(spec.options),
            status=OperationStatus.PENDING,
            total_items=len(spec.items),
            owner=spec.owner,
            started_at=now,
            updated_at=now,
        )
        async with self._lock:
            self._records[record.id] = record
        return record.id

    async def get(self, operation_id: UUID) -> OperationRecord:
        async with self._lock:
            return copy.deepcopy(self._require(operation_id))

    async def update(
        self,
        operation_id: UUID,
        expected_status: Optional[OperationStatus] = None,
        **fields: Any,
    ) -> OperationRecord:
        check_updatable(fields)
        if "status" in fields:
            fields["status"] = OperationStatus(fields["status"])
        async with self._lock:
            record = self._require(operation_id)
            if expected_status is not None and record.status != expected_status:
                raise OperationConflictError(
                    f"Operation {operation_id} is {record.status}, expected {expected_status}"
                )

            if "processed_items" in fields:
                resulting = fields.get("status", record.status)
                if resulting != OperationStatus.RUNNING:
                    raise OperationConflictError(
                        f"processed_items only moves while running, operation would be {resulting}"
                    )
                processed = fields["processed_items"]
                if processed < record.processed_items or processed > record.total_items:
                    raise OperationConflictError(
                        f"processed_items {processed} outside [{record.processed_items}, {record.total_items}]"
                    )
                record.progress_percentage = compute_progress(processed, record.total_items)

            for name, value in fields.items():
                setattr(record, name, copy.deepcopy(value))

            if record.status != OperationStatus.COMPLETED:
                record.can_rollback = False
            record.updated_at = utcnow()
            return copy.deepcopy(record)

    async def list_operations(
        self,
        status: Optional[OperationStatus] = None,
        owner: Optional[str] = None,
        operation_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[OperationRecord]:
        async with self._lock:
            matches = [
                r for r in self._records.values()
                if (status is None or r.status == status)
                and (owner is None or r.owner == owner)
                and (operation_type is None or r.operation_type == operation_type)
            ]
            matches.sort(key=lambda r: r.started_at, reverse=True)
            return [copy.deepcopy(r) for r in matches[offset:offset + limit]]

    async def delete(self, operation_id: UUID) -> None:
        async with self._lock:
            self._require(operation_id)
            del self._records[operation_id]

    async def get_status(self, operation_id: UUID) -> OperationStatus:
        async with self._lock:
            return self._require(operation_id).status

    async def claim(self, operation_id: UUID) -> bool:
        async with self._lock:
            record = self._require(operation_id)
            if record.status != OperationStatus.PENDING:
                return False
            record.status = OperationStatus.RUNNING
            record.updated_at = utcnow()
            return True

    async def record_progress(self, operation_id: UUID, processed_items: int) -> bool:
        async with self._lock:
            record = self._require(operation_id)
            if record.status != OperationStatus.RUNNING:
                return False
            if processed_items < record.processed_items or processed_items > record.total_items:
                return False
            record.processed_items = processed_items
            record.progress_percentage = compute_progress(processed_items, record.total_items)
            record.updated_at = utcnow()
            return True

    async def finalize(
        self,
        operation_id: UUID,
        status: OperationStatus,
        errors: list[ItemFailure],
        rollback_data: dict[str, Any],
        can_rollback: bool,
    ) -> bool:
        async with self._lock:
            record = self._require(operation_id)
            if record.status != OperationStatus.RUNNING:
                return False
            now = utcnow()
            record.status = status
            record.errors = list(errors)
            record.rollback_data = copy.deepcopy(rollback_data)
            record.can_rollback = can_rollback and status == OperationStatus.COMPLETED
            record.completed_at = now
            record.updated_at = now
            return True

    async def record_partial(
        self,
        operation_id: UUID,
        errors: list[ItemFailure],
        rollback_data: dict[str, Any],
    ) -> None:
        async with self._lock:
            record = self._require(operation_id)
            record.errors = list(errors)
            record.rollback_data = copy.deepcopy(rollback_data)
            record.updated_at = utcnow()

    async def fail(
        self,
        operation_id: UUID,
        message: str,
        errors: Iterable[ItemFailure] = (),
        rollback_data: Optional[dict[str, Any]] = None,
    ) -> bool:
        async with self._lock:
            record = self._require(operation_id)
            if record.status not in ACTIVE_STATUSES:
                return False
            now = utcnow()
            record.status = OperationStatus.FAILED
            record.errors = [*errors, ItemFailure(item_id=None, error_message=message)]
            if rollback_data is not None:
                record.rollback_data = copy.deepcopy(rollback_data)
            record.can_rollback = False
            record.completed_at = now
            record.updated_at = now
            return True

    async def cancel(self, operation_id: UUID) -> bool:
        async with self._lock:
            record = self._require(operation_id)
            if record.status not in ACTIVE_STATUSES:
                return False
            now = utcnow()
            record.status = OperationStatus.CANCELLED
            record.can_rollback = False
            record.completed_at = now
            record.updated_at = now
            return True

    async def begin_rollback(self, operation_id: UUID) -> bool:
        async with self._lock:
            record = self._require(operation_id)
            if record.status != OperationStatus.COMPLETED or not record.can_rollback:
                return False
            record.can_rollback = False
            record.updated_at = utcnow()
            return True

    async def finish_rollback(
        self,
        operation_id: UUID,
        status: OperationStatus,
        rollback_errors: list[ItemFailure],
    ) -> None:
        async with self._lock:
            record = self._require(operation_id)
            now = utcnow()
            record.status = status
            record.rollback_errors = list(rollback_errors)
            record.can_rollback = False
            record.rolled_back_at = now
            record.updated_at = now

    async def purge(self, before: datetime, statuses: Iterable[OperationStatus] = TERMINAL_STATUSES) -> int:
        # Active records are never eligible, whatever the caller asks for
        eligible = set(statuses) - ACTIVE_STATUSES
        async with self._lock:
            doomed = [
                r.id for r in self._records.values()
                if r.status in eligible
                and r.finished_at is not None
                and r.finished_at < before
            ]
            for operation_id in doomed:
                del self._records[operation_id]
        return len(doomed)

    async def count_stale(self, before: datetime) -> int:
        async with self._lock:
            return sum(
                1 for r in self._records.values()
                if r.status == OperationStatus.RUNNING and r.updated_at < before
            )
