"""Tests for the Firestore audit store and settings source."""

import asyncio

from certextract.config import SettingsCache
from certextract.firestore import FirestoreAuditStore, FirestoreSettingsSource
from certextract.schemas import Tier, TierAuditRecord, TierStatus


class FakeSnapshot:
    def __init__(self, data):
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeDocument:
    def __init__(self, store, path):
        self.store = store
        self.path = path

    def set(self, data):
        self.store[self.path] = dict(data)

    def get(self):
        return FakeSnapshot(self.store.get(self.path))


class FakeQuery:
    def __init__(self, docs):
        self.docs = docs

    def where(self, field, op, value):
        assert op == "=="
        return FakeQuery([d for d in self.docs if d.get(field) == value])

    def order_by(self, field):
        return FakeQuery(sorted(self.docs, key=lambda d: d[field]))

    def stream(self):
        return [FakeSnapshot(d) for d in self.docs]


class FakeCollection:
    def __init__(self, store, name):
        self.store = store
        self.name = name

    def document(self, doc_id):
        return FakeDocument(self.store, f"{self.name}/{doc_id}")

    def where(self, field, op, value):
        docs = [v for k, v in self.store.items() if k.startswith(f"{self.name}/")]
        return FakeQuery(docs).where(field, op, value)


class FakeFirestore:
    """Dictionary-backed stand-in for google.cloud.firestore_v1.Client."""

    def __init__(self):
        self.store = {}

    def collection(self, name):
        return FakeCollection(self.store, name)

    def document(self, path):
        return FakeDocument(self.store, path)


def _record(certificate_id: str, tier: Tier, run_id: str = "run-1") -> TierAuditRecord:
    return TierAuditRecord(
        certificate_id=certificate_id,
        extraction_run_id=run_id,
        tier=tier,
        tier_order=tier.order,
        status=TierStatus.LOW_CONFIDENCE,
        confidence=0.5,
        provider="fake",
    )


class TestFirestoreAuditStore:
    """Tests for FirestoreAuditStore."""

    def test_write_document_id(self):
        """Test each attempt is written under run, order and tier."""
        db = FakeFirestore()
        store = FirestoreAuditStore(db=db, collection="tierAudits")
        asyncio.run(store.write(_record("cert-1", Tier.TEMPLATE)))

        key = f"tierAudits/run-1_{Tier.TEMPLATE.order}_{Tier.TEMPLATE.value}"
        assert db.store[key]["certificate_id"] == "cert-1"
        assert db.store[key]["status"] == "LOW_CONFIDENCE"
        assert "recordedAt" in db.store[key]

    def test_records_for_certificate(self):
        """Test read-back filters by certificate and orders by tier."""
        db = FakeFirestore()
        store = FirestoreAuditStore(db=db, collection="tierAudits")

        async def run():
            await store.write(_record("cert-1", Tier.VISION))
            await store.write(_record("cert-2", Tier.TEMPLATE))
            await store.write(_record("cert-1", Tier.TEMPLATE))
            return await store.records_for("cert-1")

        records = asyncio.run(run())
        assert [r.tier for r in records] == [Tier.TEMPLATE, Tier.VISION]
        assert all(isinstance(r, TierAuditRecord) for r in records)
        assert records[0].confidence == 0.5

    def test_records_for_unknown_certificate(self):
        """Test an unknown certificate has no records."""
        store = FirestoreAuditStore(db=FakeFirestore(), collection="tierAudits")
        assert asyncio.run(store.records_for("missing")) == []


class TestFirestoreSettingsSource:
    """Tests for FirestoreSettingsSource."""

    def test_load_document(self):
        """Test settings keys are read from the settings document."""
        db = FakeFirestore()
        db.document("config/extraction").set({"AI_EXTRACTION_ENABLED": True})
        source = FirestoreSettingsSource(db=db, document_path="config/extraction")
        assert asyncio.run(source.load()) == {"AI_EXTRACTION_ENABLED": True}

    def test_missing_document_gives_defaults(self):
        """Test a missing settings document yields default settings."""
        source = FirestoreSettingsSource(db=FakeFirestore(), document_path="config/extraction")
        assert asyncio.run(source.load()) == {}
        settings = asyncio.run(SettingsCache(source).get())
        assert settings.ai_enabled is False
