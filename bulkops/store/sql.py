import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bulkops.db.models import BulkOperation
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
from bulkops.utils.locking import try_advisory_xact_lock

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is written in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(row: BulkOperation) -> OperationRecord:
    return OperationRecord(
        id=row.id,
        operation_type=row.operation_type,
        operation_name=row.operation_name,
        items=tuple(row.items or ()),
        options=dict(row.options or {}),
        status=OperationStatus(row.status),
        total_items=row.total_items,
        processed_items=row.processed_items,
        progress_percentage=row.progress_percentage,
        errors=[ItemFailure.from_dict(e) for e in row.errors or []],
        rollback_data=dict(row.rollback_data or {}),
        rollback_errors=[ItemFailure.from_dict(e) for e in row.rollback_errors or []],
        can_rollback=bool(row.can_rollback),
        owner=row.owner,
        started_at=_aware(row.started_at),
        updated_at=_aware(row.updated_at),
        completed_at=_aware(row.completed_at),
        rolled_back_at=_aware(row.rolled_back_at),
    )


def _dump_failures(failures: list[ItemFailure]) -> list[dict[str, Any]]:
    return [f.to_dict() for f in failures]


class SqlOperationStore(OperationStore):
    """
    Operation store backed by the `bulk_operations` table.

    Every transition is a single conditional UPDATE, so the row lock taken by
    the database decides races (e.g. two executors claiming the same record)
    and a reader sees either the old or the new status/counter pair.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _execute_update(self, stmt) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
                return result.rowcount

    async def create(self, spec: NewOperation) -> UUID:
        now = utcnow()
        row = BulkOperation(
            operation_type=spec.operation_type,
            operation_name=spec.operation_name,
            items=list(spec.items),
            options=dict(spec.options),
            status=OperationStatus.PENDING,
            total_items=len(spec.items),
            processed_items=0,
            progress_percentage=0.0,
            errors=[],
            rollback_data={},
            rollback_errors=[],
            can_rollback=False,
            owner=spec.owner,
            started_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            async with session.begin():
                session.add(row)
                await session.flush()
                return row.id

    async def get(self, operation_id: UUID) -> OperationRecord:
        async with self._session_factory() as session:
            row = await session.get(BulkOperation, operation_id)
            if row is None:
                raise OperationNotFoundError(operation_id)
            return _to_record(row)

    async def update(
        self,
        operation_id: UUID,
        expected_status: Optional[OperationStatus] = None,
        **fields: Any,
    ) -> OperationRecord:
        check_updatable(fields)

        async with self._session_factory() as session:
            async with session.begin():
                stmt = select(BulkOperation).where(BulkOperation.id == operation_id).with_for_update()
                row = (await session.execute(stmt)).scalar_one_or_none()
                if row is None:
                    raise OperationNotFoundError(operation_id)

                if expected_status is not None and row.status != expected_status:
                    raise OperationConflictError(
                        f"Operation {operation_id} is {row.status}, expected {expected_status}"
                    )

                values: dict[str, Any] = {}
                for name, value in fields.items():
                    if name in ("errors", "rollback_errors"):
                        value = _dump_failures(value)
                    elif name == "status":
                        value = OperationStatus(value)
                    values[name] = value

                if "processed_items" in values:
                    resulting = values.get("status", row.status)
                    if resulting != OperationStatus.RUNNING:
                        raise OperationConflictError(
                            f"processed_items only moves while running, operation would be {resulting}"
                        )
                    processed = values["processed_items"]
                    if processed < row.processed_items or processed > row.total_items:
                        raise OperationConflictError(
                            f"processed_items {processed} outside [{row.processed_items}, {row.total_items}]"
                        )
                    values["progress_percentage"] = compute_progress(processed, row.total_items)

                if values.get("status", row.status) != OperationStatus.COMPLETED:
                    values["can_rollback"] = False
                values["updated_at"] = utcnow()

                for name, value in values.items():
                    setattr(row, name, value)
                await session.flush()
                return _to_record(row)

    async def list_operations(
        self,
        status: Optional[OperationStatus] = None,
        owner: Optional[str] = None,
        operation_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[OperationRecord]:
        stmt = select(BulkOperation)
        if status is not None:
            stmt = stmt.where(BulkOperation.status == status)
        if owner is not None:
            stmt = stmt.where(BulkOperation.owner == owner)
        if operation_type is not None:
            stmt = stmt.where(BulkOperation.operation_type == operation_type)
        stmt = stmt.order_by(BulkOperation.started_at.desc()).offset(offset).limit(limit)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_record(r) for r in rows]

    async def delete(self, operation_id: UUID) -> None:
        count = await self._execute_update(
            delete(BulkOperation).where(BulkOperation.id == operation_id)
        )
        if count == 0:
            raise OperationNotFoundError(operation_id)

    async def get_status(self, operation_id: UUID) -> OperationStatus:
        async with self._session_factory() as session:
            status = await session.scalar(
                select(BulkOperation.status).where(BulkOperation.id == operation_id)
            )
            if status is None:
                raise OperationNotFoundError(operation_id)
            return OperationStatus(status)

    async def claim(self, operation_id: UUID) -> bool:
        stmt = (
            update(BulkOperation)
            .where(
                BulkOperation.id == operation_id,
                BulkOperation.status == OperationStatus.PENDING,
            )
            .values(status=OperationStatus.RUNNING, updated_at=utcnow())
        )
        return await self._execute_update(stmt) == 1

    async def record_progress(self, operation_id: UUID, processed_items: int) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                # total_items never changes after creation, so reading it first is race-free
                total = await session.scalar(
                    select(BulkOperation.total_items).where(BulkOperation.id == operation_id)
                )
                if total is None:
                    raise OperationNotFoundError(operation_id)
                if processed_items > total:
                    return False

                stmt = (
                    update(BulkOperation)
                    .where(
                        BulkOperation.id == operation_id,
                        BulkOperation.status == OperationStatus.RUNNING,
                        BulkOperation.processed_items <= processed_items,
                    )
                    .values(
                        processed_items=processed_items,
                        progress_percentage=compute_progress(processed_items, total),
                        updated_at=utcnow(),
                    )
                )
                result = await session.execute(stmt)
                return result.rowcount == 1

    async def finalize(
        self,
        operation_id: UUID,
        status: OperationStatus,
        errors: list[ItemFailure],
        rollback_data: dict[str, Any],
        can_rollback: bool,
    ) -> bool:
        now = utcnow()
        stmt = (
            update(BulkOperation)
            .where(
                BulkOperation.id == operation_id,
                BulkOperation.status == OperationStatus.RUNNING,
            )
            .values(
                status=status,
                errors=_dump_failures(errors),
                rollback_data=rollback_data,
                can_rollback=can_rollback and status == OperationStatus.COMPLETED,
                completed_at=now,
                updated_at=now,
            )
        )
        return await self._execute_update(stmt) == 1

    async def record_partial(
        self,
        operation_id: UUID,
        errors: list[ItemFailure],
        rollback_data: dict[str, Any],
    ) -> None:
        stmt = (
            update(BulkOperation)
            .where(BulkOperation.id == operation_id)
            .values(
                errors=_dump_failures(errors),
                rollback_data=rollback_data,
                updated_at=utcnow(),
            )
        )
        if await self._execute_update(stmt) == 0:
            raise OperationNotFoundError(operation_id)

    async def fail(
        self,
        operation_id: UUID,
        message: str,
        errors: Iterable[ItemFailure] = (),
        rollback_data: Optional[dict[str, Any]] = None,
    ) -> bool:
        now = utcnow()
        values: dict[str, Any] = dict(
            status=OperationStatus.FAILED,
            errors=_dump_failures([*errors, ItemFailure(item_id=None, error_message=message)]),
            can_rollback=False,
            completed_at=now,
            updated_at=now,
        )
        if rollback_data is not None:
            values["rollback_data"] = rollback_data
        stmt = (
            update(BulkOperation)
            .where(
                BulkOperation.id == operation_id,
                BulkOperation.status.in_(list(ACTIVE_STATUSES)),
            )
            .values(**values)
        )
        return await self._execute_update(stmt) == 1

    async def cancel(self, operation_id: UUID) -> bool:
        now = utcnow()
        stmt = (
            update(BulkOperation)
            .where(
                BulkOperation.id == operation_id,
                BulkOperation.status.in_(list(ACTIVE_STATUSES)),
            )
            .values(
                status=OperationStatus.CANCELLED,
                can_rollback=False,
                completed_at=now,
                updated_at=now,
            )
        )
        return await self._execute_update(stmt) == 1

    async def begin_rollback(self, operation_id: UUID) -> bool:
        stmt = (
            update(BulkOperation)
            .where(
                BulkOperation.id == operation_id,
                BulkOperation.status == OperationStatus.COMPLETED,
                BulkOperation.can_rollback.is_(True),
            )
            .values(can_rollback=False, updated_at=utcnow())
        )
        return await self._execute_update(stmt) == 1

    async def finish_rollback(
        self,
        operation_id: UUID,
        status: OperationStatus,
        rollback_errors: list[ItemFailure],
    ) -> None:
        now = utcnow()
        stmt = (
            update(BulkOperation)
            .where(BulkOperation.id == operation_id)
            .values(
                status=status,
                rollback_errors=_dump_failures(rollback_errors),
                can_rollback=False,
                rolled_back_at=now,
                updated_at=now,
            )
        )
        if await self._execute_update(stmt) == 0:
            raise OperationNotFoundError(operation_id)

    async def purge(self, before: datetime, statuses: Iterable[OperationStatus] = TERMINAL_STATUSES) -> int:
        eligible = set(statuses) - ACTIVE_STATUSES
        if not eligible:
            return 0

        async with self._session_factory() as session:
            async with session.begin():
                if not await try_advisory_xact_lock(session):
                    logger.info("Retention sweep skipped: another instance holds the sweeper lock")
                    return 0

                finished_at = func.coalesce(BulkOperation.rolled_back_at, BulkOperation.completed_at)
                stmt = delete(BulkOperation).where(
                    BulkOperation.status.in_(sorted(eligible)),
                    finished_at.is_not(None),
                    finished_at < before,
                )
                result = await session.execute(stmt)
                return result.rowcount

    async def count_stale(self, before: datetime) -> int:
        async with self._session_factory() as session:
            stmt = (
                select(func.count())
                .select_from(BulkOperation)
                .where(
                    BulkOperation.status == OperationStatus.RUNNING,
                    BulkOperation.updated_at < before,
                )
            )
            return (await session.execute(stmt)).scalar() or 0
