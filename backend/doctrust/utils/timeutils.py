from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware current UTC time; the default clock for every service"""
    return datetime.now(timezone.utc)
