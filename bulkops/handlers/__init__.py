from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bulkops.handlers.domains import register_domain_handlers
from bulkops.handlers.registry import HandlerRegistry, HandlerSpec, ItemHandler, Restorer
from bulkops.handlers.vanity_codes import register_vanity_code_handlers


def build_default_registry(session_factory: async_sessionmaker[AsyncSession]) -> HandlerRegistry:
    """Registry with the built-in vanity code and domain operations."""
    registry = HandlerRegistry()
    register_vanity_code_handlers(registry, session_factory)
    register_domain_handlers(registry, session_factory)
    return registry


__all__ = [
    "HandlerRegistry",
    "HandlerSpec",
    "ItemHandler",
    "Restorer",
    "build_default_registry",
]
