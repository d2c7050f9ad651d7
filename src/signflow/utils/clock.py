from datetime import datetime, timezone


def utcnow() -> datetime:
    """UTC naive, como se guardan todas las fechas en la base de datos."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
