import secrets
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bulkops.db.models import AuthorizedDomain
from bulkops.domain.models import utcnow
from bulkops.handlers.common import make_handler, make_restorer
from bulkops.handlers.registry import HandlerRegistry

OPERATION_TYPE = "domains"

SNAPSHOT_FIELDS = (
    "status",
    "api_key",
    "suspended_at",
    "suspended_reason",
    "verification_status",
    "last_verified_at",
)

API_KEY_PREFIX = "bk_"


def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_hex(16)


def _suspend(options: dict[str, Any]) -> dict[str, Any]:
    return {
        "status": "suspended",
        "suspended_at": utcnow(),
        "suspended_reason": options.get("reason") or "Bulk operation",
    }


def _verify(options: dict[str, Any]) -> dict[str, Any]:
    # Ownership is checked out of band; the bulk action only records the result
    return {"verification_status": "verified", "last_verified_at": utcnow(), "status": "active"}


def register_domain_handlers(
    registry: HandlerRegistry,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    def add(name, changes):
        handler = make_handler(session_factory, AuthorizedDomain, SNAPSHOT_FIELDS, changes)
        registry.register(OPERATION_TYPE, name, handler)

    add("activate", lambda options: {"status": "active", "suspended_at": None, "suspended_reason": None})
    add("suspend", _suspend)
    add("regenerate_api_key", lambda options: {"api_key": generate_api_key()})
    add("verify", _verify)

    registry.register_restorer(
        OPERATION_TYPE,
        make_restorer(session_factory, AuthorizedDomain, SNAPSHOT_FIELDS),
    )
