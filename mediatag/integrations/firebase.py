"""
Firestore integration — backs the Tag record store.

`db` starts as None and is bound by `initialize()` in the FastAPI lifespan.
Services read `firebase.db` at call time so tests can swap in MockFirestore.

Collections:
    tags         — one document per registered Tag (auto id)
    tag_keys     — uniqueness claims: "fingerprint:{fp}", "media_cid:{cid}", ...
    audit_trails — persisted audit trails, referenced by Tag.audit_trail_ref
"""

import json
import logging

import firebase_admin
from firebase_admin import credentials, firestore

from mediatag.config import settings

logger = logging.getLogger(__name__)

TAGS = "tags"
TAG_KEYS = "tag_keys"
AUDIT_TRAILS = "audit_trails"

db = None  # firestore.Client | None


def initialize() -> None:
    global db

    if not firebase_admin._apps:
        cred = None
        if settings.firebase_service_account:
            try:
                cred = credentials.Certificate(json.loads(settings.firebase_service_account))
            except ValueError as e:
                logger.error(f"[STARTUP] Invalid FIREBASE_SERVICE_ACCOUNT, using default credentials: {e}")
        firebase_admin.initialize_app(cred)

    db = firestore.client()
    logger.info("[STARTUP] Firestore record store ready")
