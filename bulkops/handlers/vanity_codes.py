from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bulkops.db.models import VanityCode
from bulkops.domain.errors import ItemError
from bulkops.domain.models import utcnow
from bulkops.handlers.common import make_handler, make_restorer, parse_datetime
from bulkops.handlers.registry import HandlerRegistry

OPERATION_TYPE = "vanity_codes"

SNAPSHOT_FIELDS = (
    "status",
    "discount_type",
    "discount_value",
    "expires_at",
    "usage_count",
    "conversion_count",
    "revenue_generated",
)


def _update_expiry(options: dict[str, Any]) -> dict[str, Any]:
    return {"expires_at": parse_datetime(options["expiry_date"], "expiry_date")}


def _update_discount(options: dict[str, Any]) -> dict[str, Any]:
    try:
        value = float(options["discount_value"])
    except (TypeError, ValueError):
        raise ItemError(f"Option discount_value is not a number: {options['discount_value']!r}")
    return {"discount_type": options["discount_type"], "discount_value": value}


def register_vanity_code_handlers(
    registry: HandlerRegistry,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    def add(name, changes, required_options=(), option_validator=None):
        handler = make_handler(session_factory, VanityCode, SNAPSHOT_FIELDS, changes)
        registry.register(OPERATION_TYPE, name, handler, required_options, option_validator)

    add("activate", lambda options: {"status": "active"})
    add("deactivate", lambda options: {"status": "inactive"})
    add("expire", lambda options: {"status": "expired", "expires_at": utcnow()})
    # Soft delete, so a rollback can bring the code back
    add("delete", lambda options: {"status": "deleted"})
    # Option values are parsed at submission too, so a bad value fails once
    add("update_expiry", _update_expiry, ("expiry_date",), _update_expiry)
    add("update_discount", _update_discount, ("discount_type", "discount_value"), _update_discount)
    add("reset_stats", lambda options: {
        "usage_count": 0,
        "conversion_count": 0,
        "revenue_generated": 0.0,
    })

    registry.register_restorer(
        OPERATION_TYPE,
        make_restorer(session_factory, VanityCode, SNAPSHOT_FIELDS),
    )
