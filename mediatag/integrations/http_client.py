"""
Shared aiohttp ClientSession — initialized once during FastAPI lifespan.

Every collaborator (detector, pinning service, ledger gateway) is reached
through this session. Per-call timeouts are passed on each request, so one
session serves integrations with very different latency profiles.

Usage (pinning a file, see integrations/pinning.py):
    async with http_client.request_session() as sess:
        async with sess.post(
            f"{settings.pinning_api_url}/pinning/pinFileToIPFS",
            data=form,
            headers={"Authorization": f"Bearer {settings.pinning_jwt}"},
            timeout=http_client.timeout(settings.pinning_timeout_sec),
        ) as response:
            cid = (await response.json(content_type=None))["IpfsHash"]

The context manager yields the shared session when available, otherwise
creates and closes a temporary one (covers tests and pre-init calls).
"""

import logging
from contextlib import asynccontextmanager

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 30

session: aiohttp.ClientSession | None = None


def timeout(total_sec: float) -> aiohttp.ClientTimeout:
    return aiohttp.ClientTimeout(total=total_sec)


async def initialize() -> None:
    global session
    session = aiohttp.ClientSession(timeout=timeout(DEFAULT_TIMEOUT_SEC))
    logger.info("[STARTUP] Shared HTTP session initialized")


async def close() -> None:
    global session
    if session and not session.closed:
        await session.close()
        session = None
        logger.info("[SHUTDOWN] Shared HTTP session closed")


@asynccontextmanager
async def request_session():
    """
    Async context manager that yields the shared session if available,
    otherwise creates and closes a temporary one.

    Never closes the shared session; http_client.close() handles that.
    """
    if session and not session.closed:
        yield session
    else:
        tmp = aiohttp.ClientSession(timeout=timeout(DEFAULT_TIMEOUT_SEC))
        try:
            yield tmp
        finally:
            await tmp.close()
