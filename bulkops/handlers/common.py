from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bulkops.db.session import Base
from bulkops.domain.errors import ItemError, RollbackError
from bulkops.handlers.registry import ItemHandler, Restorer

# options -> column values to write
ChangeBuilder = Callable[[dict[str, Any]], dict[str, Any]]


def parse_row_id(item_id: Any) -> int:
    try:
        return int(item_id)
    except (TypeError, ValueError):
        raise ItemError(f"Invalid item id {item_id!r}")


def parse_datetime(value: Any, option: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            raise ItemError(f"Option {option} is not an ISO-8601 date: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def snapshot_row(row: Base, fields: tuple[str, ...]) -> dict[str, Any]:
    """JSON-safe copy of the given columns; datetimes become ISO strings."""
    snapshot = {}
    for name in fields:
        value = getattr(row, name)
        if isinstance(value, datetime):
            value = value.isoformat()
        snapshot[name] = value
    return snapshot


def _restore_value(value: Any, column_is_datetime: bool) -> Any:
    if value is not None and column_is_datetime:
        return datetime.fromisoformat(value)
    return value


def make_handler(
    session_factory: async_sessionmaker[AsyncSession],
    model: type[Base],
    snapshot_fields: tuple[str, ...],
    changes: ChangeBuilder,
) -> ItemHandler:
    """
    Builds an item handler that loads one row, snapshots `snapshot_fields`,
    and writes the values returned by `changes(options)` in one transaction.
    Values are absolute, so running the handler twice leaves the same state.
    """
    label = model.__tablename__

    async def handler(item_id: Any, options: dict[str, Any]) -> dict[str, Any]:
        row_id = parse_row_id(item_id)
        async with session_factory() as session:
            async with session.begin():
                row = await session.get(model, row_id, with_for_update=True)
                if row is None:
                    raise ItemError(f"{label} row {row_id} not found")

                snapshot = snapshot_row(row, snapshot_fields)
                for name, value in changes(options).items():
                    setattr(row, name, value)
        return snapshot

    return handler


def make_restorer(
    session_factory: async_sessionmaker[AsyncSession],
    model: type[Base],
    restore_fields: Optional[tuple[str, ...]] = None,
) -> Restorer:
    """Writes a snapshot produced by make_handler() back onto its row."""
    label = model.__tablename__
    columns = model.__table__.columns

    async def restorer(item_id: Any, snapshot: dict[str, Any]) -> None:
        try:
            row_id = int(item_id)
        except (TypeError, ValueError):
            raise RollbackError(f"Invalid item id {item_id!r}")

        fields = restore_fields or tuple(snapshot)
        async with session_factory() as session:
            async with session.begin():
                row = await session.get(model, row_id, with_for_update=True)
                if row is None:
                    raise RollbackError(f"{label} row {row_id} no longer exists")

                for name in fields:
                    if name == "id" or name not in snapshot or name not in columns:
                        continue
                    is_datetime = isinstance(columns[name].type, DateTime)
                    setattr(row, name, _restore_value(snapshot[name], is_datetime))

    return restorer
