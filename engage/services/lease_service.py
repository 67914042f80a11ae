"""Storage-backed leases for mutual exclusion of background jobs.

A lease is a named row with a holder and an expiry. Acquiring succeeds only
when no live lease exists, so at most one holder runs at a time across
processes sharing the database. A crashed holder's lease simply expires.
"""

import logging
from datetime import UTC, datetime, timedelta

from engage.core import db_client


logger = logging.getLogger(__name__)

_ACQUIRE_SQL = """
    INSERT INTO leases (name, holder, acquired_at, expires_at)
    VALUES (?, ?, ?, ?)
    ON CONFLICT (name) DO UPDATE SET
        holder = excluded.holder,
        acquired_at = excluded.acquired_at,
        expires_at = excluded.expires_at
    WHERE leases.expires_at <= excluded.acquired_at
"""


async def acquire(*, name: str, holder: str, ttl_seconds: int, now: datetime | None = None) -> bool:
    """Try to take the named lease.

    Args:
        name: Lease name
        holder: Unique ID of the would-be holder
        ttl_seconds: Lease lifetime
        now: Current time (defaults to UTC now)

    Returns:
        True if the caller now holds the lease
    """
    now = now or datetime.now(UTC)
    expires_at = now + timedelta(seconds=ttl_seconds)

    changed = await db_client.execute(_ACQUIRE_SQL, (name, holder, now.isoformat(), expires_at.isoformat()))
    acquired = changed == 1

    if acquired:
        logger.debug("Lease acquired", extra={"lease": name, "holder": holder, "expires_at": expires_at.isoformat()})
    else:
        logger.info("Lease held elsewhere, skipping", extra={"lease": name, "holder": holder})
    return acquired


async def release(*, name: str, holder: str) -> bool:
    """Release the named lease if the caller still holds it.

    Returns:
        True if a lease was released
    """
    changed = await db_client.execute("DELETE FROM leases WHERE name = ? AND holder = ?", (name, holder))
    if changed:
        logger.debug("Lease released", extra={"lease": name, "holder": holder})
    else:
        logger.warning("Lease was not held at release time", extra={"lease": name, "holder": holder})
    return changed == 1
