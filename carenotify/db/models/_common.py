"""Column helpers shared by the model modules."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware UTC now (Python-side default, backend independent)."""
    return datetime.now(timezone.utc)
