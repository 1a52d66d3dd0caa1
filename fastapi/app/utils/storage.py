import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from pymongo.errors import ConnectionFailure, ExecutionTimeout, WTimeoutError

from app.exceptions import StorageUnavailable


logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (ConnectionFailure, ExecutionTimeout, WTimeoutError)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate driver timeouts and connection failures into StorageUnavailable."""
    try:
        yield
    except _TRANSIENT_ERRORS as exc:
        logger.warning("Storage failure during %s: %s", operation, exc)
        raise StorageUnavailable(operation, {"reason": type(exc).__name__}) from exc


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_ms(value: datetime) -> int:
    return int(as_utc(value).timestamp() * 1000)


def from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # BSON datetimes come back naive unless the client is tz_aware
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
