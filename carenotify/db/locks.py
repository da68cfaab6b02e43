"""Transaction-scoped advisory locks.

PostgreSQL only; the lock is released when the surrounding transaction
commits or rolls back. SQLite serializes writers on its own, so there the
call is a no-op.
"""

import hashlib

from sqlalchemy import text
from sqlalchemy.orm import Session


def lock_id(*parts) -> int:
    """Stable signed 64-bit key for pg_advisory_xact_lock."""
    digest = hashlib.sha256("|".join(str(part) for part in parts).encode()).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


def advisory_xact_lock(db: Session, *parts) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text("SELECT pg_advisory_xact_lock(:lock_id)"), {"lock_id": lock_id(*parts)})
