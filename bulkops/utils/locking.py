from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

# Fixed key for the retention sweeper lock.
# Any 64-bit integer works, it only has to be shared by every instance.
SWEEPER_LOCK_KEY = 84728473

async def try_advisory_xact_lock(session: AsyncSession, key: int = SWEEPER_LOCK_KEY) -> bool:
    """
    Attempts to acquire a Postgres transaction-level advisory lock.
    Returns True if acquired, False if another transaction holds it.

    The lock is released when the surrounding transaction ends. Other
    backends (SQLite) have a single writer anyway, so the lock is granted.
    """
    if session.get_bind().dialect.name != "postgresql":
        return True

    result = await session.execute(
        text("SELECT pg_try_advisory_xact_lock(:key)"),
        {"key": key}
    )
    return result.scalar() is True
