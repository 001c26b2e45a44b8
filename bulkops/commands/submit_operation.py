import logging
from typing import Any, Optional, Sequence
from uuid import UUID

from bulkops.api.v1.metrics import OPERATIONS_SUBMITTED
from bulkops.domain.errors import HandlerNotFoundError, ItemError, ValidationError
from bulkops.domain.models import ItemId, NewOperation
from bulkops.handlers.registry import HandlerRegistry
from bulkops.scheduler.dispatcher import OperationDispatcher
from bulkops.settings import settings
from bulkops.store.base import OperationStore

logger = logging.getLogger(__name__)

def normalize_items(items: Sequence[Any]) -> tuple[ItemId, ...]:
    """
    Validates item ids and drops repeated ids, keeping the first occurrence,
    so no item is mutated twice by the same operation. Ids are compared in
    their string form (1 and "1" are the same item), which is also how
    snapshots are keyed.
    """
    if isinstance(items, (str, bytes)) or not isinstance(items, Sequence):
        raise ValidationError("items must be a list of item identifiers")

    seen = set()
    normalized = []
    for item in items:
        # bool is an int subclass but never a meaningful id
        if isinstance(item, bool) or not isinstance(item, (int, str)):
            raise ValidationError(f"Invalid item identifier {item!r}")
        if isinstance(item, str) and not item.strip():
            raise ValidationError("Item identifiers must not be blank")
        key = str(item)
        if key in seen:
            continue
        seen.add(key)
        normalized.append(item)

    if not normalized:
        raise ValidationError("items must not be empty")
    return tuple(normalized)

async def submit_operation(
    store: OperationStore,
    registry: HandlerRegistry,
    dispatcher: OperationDispatcher,
    operation_type: str,
    operation_name: str,
    items: Sequence[Any],
    options: Optional[dict[str, Any]] = None,
    owner: Optional[str] = None,
) -> UUID:
    """
    Validates a bulk request, records it as pending and hands it to the
    dispatcher. Returns as soon as the record exists; items are processed
    in the background.
    """
    options = dict(options or {})

    # 1. Operation must be registered
    if not operation_type or not operation_name:
        raise ValidationError("operation_type and operation_name are required")
    try:
        spec = registry.resolve(operation_type, operation_name)
    except HandlerNotFoundError as e:
        raise ValidationError(str(e)) from e

    # 2. Items
    normalized = normalize_items(items)
    if len(normalized) > settings.MAX_ITEMS_PER_OPERATION:
        raise ValidationError(
            f"Too many items ({len(normalized)} > {settings.MAX_ITEMS_PER_OPERATION})"
        )

    # 3. Options
    if any(not isinstance(key, str) for key in options):
        raise ValidationError("Option names must be strings")
    missing = spec.missing_options(options)
    if missing:
        raise ValidationError(
            f"{operation_type}.{operation_name} requires option(s): {', '.join(missing)}"
        )
    if spec.option_validator is not None:
        try:
            spec.option_validator(options)
        except (ItemError, ValueError, TypeError) as e:
            raise ValidationError(f"{operation_type}.{operation_name}: {e}") from e

    # 4. Persist, then schedule exactly once
    operation_id = await store.create(NewOperation(
        operation_type=operation_type,
        operation_name=operation_name,
        items=normalized,
        options=options,
        owner=owner,
    ))
    dispatcher.dispatch(operation_id)

    OPERATIONS_SUBMITTED.labels(operation_type=operation_type).inc()
    logger.info(
        "Operation %s submitted by %s: %s.%s on %d items",
        operation_id, owner or "anonymous", operation_type, operation_name, len(normalized),
    )
    return operation_id
