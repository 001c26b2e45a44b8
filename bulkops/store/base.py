from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID

from bulkops.domain.models import ItemFailure, NewOperation, OperationRecord
from bulkops.domain.states import OperationStatus, TERMINAL_STATUSES

# Fields fixed at creation; update() refuses to touch them
IMMUTABLE_FIELDS = frozenset({
    "id",
    "operation_type",
    "operation_name",
    "items",
    "options",
    "total_items",
    "started_at",
})

UPDATABLE_FIELDS = frozenset({
    "status",
    "processed_items",
    "errors",
    "rollback_data",
    "rollback_errors",
    "can_rollback",
    "owner",
    "completed_at",
    "rolled_back_at",
})


class OperationStore(ABC):
    """
    Durable storage for operation records.

    Besides the generic CRUD calls, the store exposes the compare-and-set
    transitions the engine relies on. Each of them is applied as a single
    statement (or a single critical section) so that status and counters are
    never observed half-written.
    """

    # --- CRUD ---

    @abstractmethod
    async def create(self, spec: NewOperation) -> UUID:
        ...

    @abstractmethod
    async def get(self, operation_id: UUID) -> OperationRecord:
        """Raises OperationNotFoundError."""

    @abstractmethod
    async def update(
        self,
        operation_id: UUID,
        expected_status: Optional[OperationStatus] = None,
        **fields: Any,
    ) -> OperationRecord:
        """
        Partial update of mutable fields.
        Raises OperationConflictError when expected_status does not match,
        when processed_items would move backwards or past total_items, or
        when processed_items is set on a record that is not (or will not be)
        running.
        """

    @abstractmethod
    async def list_operations(
        self,
        status: Optional[OperationStatus] = None,
        owner: Optional[str] = None,
        operation_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[OperationRecord]:
        """Newest first."""

    @abstractmethod
    async def delete(self, operation_id: UUID) -> None:
        ...

    # --- Executor transitions ---

    @abstractmethod
    async def get_status(self, operation_id: UUID) -> OperationStatus:
        ...

    @abstractmethod
    async def claim(self, operation_id: UUID) -> bool:
        """pending -> running. Exactly one concurrent caller gets True."""

    @abstractmethod
    async def record_progress(self, operation_id: UUID, processed_items: int) -> bool:
        """Only applies while running; returns False otherwise."""

    @abstractmethod
    async def finalize(
        self,
        operation_id: UUID,
        status: OperationStatus,
        errors: list[ItemFailure],
        rollback_data: dict[str, Any],
        can_rollback: bool,
    ) -> bool:
        """running -> completed|failed."""

    @abstractmethod
    async def record_partial(
        self,
        operation_id: UUID,
        errors: list[ItemFailure],
        rollback_data: dict[str, Any],
    ) -> None:
        """Keeps the ledger of a cancelled run; never changes status."""

    @abstractmethod
    async def fail(
        self,
        operation_id: UUID,
        message: str,
        errors: Iterable[ItemFailure] = (),
        rollback_data: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        pending|running -> failed. The item errors gathered so far are kept and
        followed by one synthetic entry (item_id None) carrying `message`;
        rollback_data, when given, replaces the stored ledger.
        """

    # --- External requests ---

    @abstractmethod
    async def cancel(self, operation_id: UUID) -> bool:
        """pending|running -> cancelled."""

    @abstractmethod
    async def begin_rollback(self, operation_id: UUID) -> bool:
        """Clears can_rollback on a completed record; False if someone else did."""

    @abstractmethod
    async def finish_rollback(
        self,
        operation_id: UUID,
        status: OperationStatus,
        rollback_errors: list[ItemFailure],
    ) -> None:
        ...

    # --- Maintenance ---

    @abstractmethod
    async def purge(self, before: datetime, statuses: Iterable[OperationStatus] = TERMINAL_STATUSES) -> int:
        """Deletes records in `statuses` that finished before `before`."""

    @abstractmethod
    async def count_stale(self, before: datetime) -> int:
        """Running records whose last write is older than `before`."""

    async def close(self) -> None:
        pass


def check_updatable(fields: dict[str, Any]) -> None:
    blocked = set(fields) & IMMUTABLE_FIELDS
    if blocked:
        raise ValueError(f"Fields are write-once: {', '.join(sorted(blocked))}")
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown fields: {', '.join(sorted(unknown))}")
