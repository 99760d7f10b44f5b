import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Load environment variables at the very beginning
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

from fastapi import FastAPI, Request  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from starlette.exceptions import HTTPException as StarletteHTTPException  # noqa: E402

from mediatag.api import registration, system, tags  # noqa: E402
from mediatag.integrations import firebase as firebase_module  # noqa: E402
from mediatag.integrations import http_client  # noqa: E402
from mediatag.integrations import redis_client as redis_module  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    await http_client.initialize()

    try:
        firebase_module.initialize()
    except Exception as e:
        # The app still serves /health and /audit; record routes answer 503.
        logger.error(f"[STARTUP] Firestore init failed: {e}")

    redis_module.initialize()

    yield

    await http_client.close()
    logger.info("[SHUTDOWN] Integrations closed")


app = FastAPI(title="Media Provenance Registration API", lifespan=lifespan)


@app.exception_handler(StarletteHTTPException)
async def custom_http_exception_handler(request: Request, exc: StarletteHTTPException):
    headers = getattr(exc, "headers", None) or {}
    headers["Access-Control-Allow-Origin"] = "*"

    response_data = {"detail": exc.detail}
    log = logger.warning if exc.status_code >= 500 else logger.info
    log(f"[ERROR HANDLER] {request.method} {request.url.path} → {exc.status_code}: {response_data}")

    return JSONResponse(status_code=exc.status_code, content=response_data, headers=headers)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(system.router)
app.include_router(registration.router)
app.include_router(tags.router)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("mediatag.main:app", host="0.0.0.0", port=port, log_level="info")
