"""Firestore-backed audit store and settings source."""

from .client import FirestoreAuditStore, FirestoreSettingsSource, get_firestore_client

__all__ = [
    "FirestoreAuditStore",
    "FirestoreSettingsSource",
    "get_firestore_client",
]
