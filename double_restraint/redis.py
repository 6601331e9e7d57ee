import logging
from typing import Optional
from urllib.parse import urlparse

import redis

from double_restraint.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None
_client_override: Optional[redis.Redis] = None


def set_client_override(client: Optional[redis.Redis]) -> None:
    """Install a substitute client (primarily for tests)."""
    global _client_override, _redis_client
    _client_override = client
    if client is not None:
        _redis_client = None


def close_redis_client() -> None:
    global _redis_client
    if _redis_client is None:
        return
    client = _redis_client
    _redis_client = None
    try:
        client.close()
    except redis.RedisError as e:
        logger.warning(f"Error while closing the restraint Redis client: {e}")


def _describe(url: str) -> str:
    # keine Zugangsdaten ins Log schreiben
    parsed = urlparse(url)
    db = (parsed.path or "/0").lstrip("/") or "0"
    return f"{parsed.hostname or 'unknown-host'}:{parsed.port or 6379} db={db}"


def get_redis_client() -> Optional[redis.Redis]:
    """
    Returns the Redis client that holds the restraint pool counters.
    Connects on the first call if REDIS_URL is configured; None means pools
    can only be limited per process.
    """
    global _redis_client

    if _client_override is not None:
        return _client_override
    if _redis_client is not None:
        return _redis_client

    if not settings.redis_url:
        logger.info("REDIS_URL is not set, restraint pools will not be shared between processes.")
        return None

    target = _describe(settings.redis_url)
    try:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        client.ping()
    except redis.RedisError as e:
        logger.error(f"Restraint pools cannot reach Redis at {target}: {e}")
        return None

    _redis_client = client
    logger.info(f"Restraint pools shared via Redis at {target} (keys under '{settings.key_prefix}')")
    return _redis_client
