"""
Firestore client for audit records and runtime extraction settings.

The Firebase Admin SDK client is synchronous; calls are moved off the event
loop with asyncio.to_thread.
"""

import asyncio
import logging
from functools import lru_cache
from typing import Any, Mapping, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.cloud.firestore_v1 import Client

from ..config.settings import Settings, get_settings
from ..schemas.tiers import TierAuditRecord

logger = logging.getLogger(__name__)


def _initialize_firebase(settings: Settings) -> None:
    """Initialize Firebase Admin SDK if not already done."""
    if firebase_admin._apps:
        return

    if settings.google_application_credentials:
        cred = credentials.Certificate(settings.google_application_credentials)
        firebase_admin.initialize_app(cred)
    elif settings.firebase_project_id:
        # Use default credentials (for Cloud Run, etc.)
        firebase_admin.initialize_app(options={
            "projectId": settings.firebase_project_id
        })
    else:
        firebase_admin.initialize_app()


@lru_cache()
def get_firestore_client() -> Client:
    """Get the Firestore client (sync)."""
    _initialize_firebase(get_settings())
    return firestore.client()


class FirestoreAuditStore:
    """Writes each audit record as a new document in the audit collection."""

    def __init__(self, db: Optional[Client] = None, collection: Optional[str] = None):
        self._db = db
        self.collection = collection or get_settings().firestore_audit_collection

    @property
    def db(self) -> Client:
        """Lazy-load Firestore client."""
        if self._db is None:
            self._db = get_firestore_client()
        return self._db

    def _write(self, record: TierAuditRecord) -> None:
        data = record.to_dict()
        data["recordedAt"] = firestore.SERVER_TIMESTAMP
        doc_id = f"{record.extraction_run_id}_{record.tier_order}_{record.tier.value}"
        self.db.collection(self.collection).document(doc_id).set(data)

    async def write(self, record: TierAuditRecord) -> None:
        await asyncio.to_thread(self._write, record)

    def _records_for(self, certificate_id: str) -> list[TierAuditRecord]:
        query = (
            self.db.collection(self.collection)
            .where("certificate_id", "==", certificate_id)
            .order_by("tier_order")
        )
        return [TierAuditRecord.model_validate(doc.to_dict()) for doc in query.stream()]

    async def records_for(self, certificate_id: str) -> list[TierAuditRecord]:
        """Every record for a certificate, across runs, ordered by tier."""
        return await asyncio.to_thread(self._records_for, certificate_id)


class FirestoreSettingsSource:
    """
    Reads extraction settings from one Firestore document.

    The document holds the settings keys (AI_EXTRACTION_ENABLED,
    TIER1_CONFIDENCE_THRESHOLD, ...) as top-level fields.
    """

    def __init__(self, db: Optional[Client] = None, document_path: Optional[str] = None):
        self._db = db
        self.document_path = document_path or get_settings().firestore_settings_document

    @property
    def db(self) -> Client:
        if self._db is None:
            self._db = get_firestore_client()
        return self._db

    def _load(self) -> Mapping[str, Any]:
        doc = self.db.document(self.document_path).get()
        if not doc.exists:
            logger.warning(f"Settings document {self.document_path} not found, using defaults")
            return {}
        return doc.to_dict() or {}

    async def load(self) -> Mapping[str, Any]:
        return await asyncio.to_thread(self._load)
