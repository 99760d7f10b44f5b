"""
System / health routes.
"""

from fastapi import APIRouter

from mediatag.integrations import firebase as firebase_module
from mediatag.integrations import redis_client as redis_module

router = APIRouter(tags=["System"])


@router.get("/health")
async def health():
    return {
        "status": "healthy",
        "record_store": "up" if firebase_module.db else "down",
        "audit_store": "redis" if redis_module.client else "memory",
    }
