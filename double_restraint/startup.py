"""Process start-up: logging and the one limiter shared by all restraints."""

import logging
from typing import Optional

import redis

from double_restraint.common.logging import setup_logging
from double_restraint.config import Settings, settings as default_settings
from double_restraint.limiter import ConcurrencyLimiter, build_limiter

logger = logging.getLogger(__name__)


def bootstrap(
    settings: Optional[Settings] = None,
    client: Optional[redis.Redis] = None,
    log_file: Optional[str] = None,
) -> ConcurrencyLimiter:
    """
    Configures logging from LOG_LEVEL / LOG_JSON and creates the limiter.
    Call once at start-up and pass the returned limiter to every restraint.
    """
    settings = settings or default_settings
    setup_logging(level=settings.log_level, json_format=settings.log_json, log_file=log_file)
    limiter = build_limiter(settings, client=client)
    logger.info(f"Restraint pools backed by {type(limiter).__name__} (slot timeout {settings.slot_timeout}s)")
    return limiter
