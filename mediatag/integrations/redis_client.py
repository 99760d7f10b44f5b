"""
Upstash Redis integration — recoverable store for in-flight audit trails.

`client` starts as None. Call `initialize()` inside the FastAPI lifespan.
Consumers read `redis_client.client` at call time and fall back to process
memory when it is None.
"""

import logging

from upstash_redis import Redis

from mediatag.config import settings

logger = logging.getLogger(__name__)

client = None  # Redis | None


def initialize() -> None:
    global client

    if not (settings.upstash_redis_host and settings.upstash_redis_password):
        logger.warning("[STARTUP] Redis not configured; audit trails kept in process memory")
        return

    try:
        client = Redis(url=settings.upstash_redis_host, token=settings.upstash_redis_password)
        logger.info("[STARTUP] Upstash Redis client initialized")
    except Exception as e:
        logger.error(f"[STARTUP] Redis init failed, using memory fallback: {e}")
        client = None
