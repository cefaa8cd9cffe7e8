import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

import redis

from .config import settings


log = logging.getLogger(__name__)


def utcnow() -> datetime:
    # Naive UTC, matching the DateTime columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_uuid(value: Any) -> uuid.UUID | None:
    """Parse a path/query identifier; ``None`` when it is not a UUID."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _redis_client() -> redis.Redis | None:
    if not settings.REDIS_URL:
        return None
    return redis.from_url(settings.REDIS_URL)


def notify(event: str, payload: Dict[str, Any]) -> None:
    mode = getattr(settings, "NOTIFY_MODE", "log")
    if mode == "redis":
        cli = _redis_client()
        if cli is None:
            log.warning("notify(redis): no client available; falling back to log")
        else:
            try:
                cli.publish(settings.NOTIFY_REDIS_CHANNEL, json.dumps({"event": event, "data": payload}, default=str))
                return
            except redis.RedisError as e:
                log.warning("notify(redis) failed: %s", e)
    log.info("event=%s payload=%s", event, payload)
