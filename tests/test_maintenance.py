"""
Tests for the plaintext audit and re-encryption routines.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from worksheet_vault.core.codec import EncryptFailurePolicy
from worksheet_vault.core.dao import InMemoryRecordStore, SQLiteRecordStore
from worksheet_vault.core.maintenance import audit_plaintext, reencrypt_plaintext
from worksheet_vault.core.schema import RecordKey
from worksheet_vault.core.service import WorksheetVault

from conftest import BrokenCipher, FailingStore, ReversingCipher


@pytest.fixture
def vault():
    return WorksheetVault(store=InMemoryRecordStore(), cipher=ReversingCipher(), write_timeout=2,
                          autosave_enabled=False)


async def seed(vault):
    await vault.gateway.write(RecordKey("alice", 1, "clean"), {"notes": "encrypted"})
    # Written straight to the store, as a record from before encryption would be
    await vault.store.upsert("alice", 1, "legacy", {"journal": "old", "items": [{"answer": "a"}], "n": 1},
                             completed=True)
    await vault.store.upsert("bob", 2, "legacy", {"story": "older"})


class TestAuditPlaintext:

    async def test_finds_plaintext_fields_for_every_owner(self, vault):
        await seed(vault)

        report = await audit_plaintext(vault)

        assert report.records_scanned == 3
        assert report.issues_found == 3
        assert [(f.owner_id, f.worksheet_id, f.fields) for f in report.findings] == [
            ("alice", "legacy", ["journal", "items[0].answer"]),
            ("bob", "legacy", ["story"]),
        ]
        assert report.completed_at is not None

    async def test_limit_to_owners(self, vault):
        await seed(vault)

        report = await audit_plaintext(vault, ["bob"])

        assert report.records_scanned == 1
        assert [f.owner_id for f in report.findings] == ["bob"]

    async def test_encrypt_fallback_is_detected(self):
        store = InMemoryRecordStore()
        vault = WorksheetVault(store=store, cipher=BrokenCipher(), write_timeout=2, autosave_enabled=False)
        vault.codec.encrypt_failure_policy = EncryptFailurePolicy.FALLBACK

        await vault.gateway.write(RecordKey("alice", 1, "ws"), {"reflection": "fell back"})

        report = await audit_plaintext(vault)
        assert report.findings[0].fields == ["reflection"]

    async def test_report_to_dict(self, vault):
        await seed(vault)

        data = (await audit_plaintext(vault, ["bob"])).to_dict()

        assert data["operation"] == "audit_plaintext"
        assert data["issues_found"] == 1
        assert data["findings"] == [
            {"owner_id": "bob", "phase_number": 2, "worksheet_id": "legacy", "fields": ["story"]}
        ]


class TestReencryptPlaintext:

    async def test_rewrites_affected_records(self, vault):
        await seed(vault)

        report = await reencrypt_plaintext(vault)

        assert report.records_rewritten == 2
        assert report.errors == []
        assert (await audit_plaintext(vault)).findings == []

        stored = await vault.store.get("alice", 1, "legacy")
        assert stored.document["journal"] == "rev:dlo"
        assert stored.completed is True

        record = await vault.gateway.read(RecordKey("alice", 1, "legacy"))
        assert record.document == {"journal": "old", "items": [{"answer": "a"}], "n": 1}

    async def test_dry_run_changes_nothing(self, vault):
        await seed(vault)

        report = await reencrypt_plaintext(vault, dry_run=True)

        assert report.records_rewritten == 0
        assert len(report.findings) == 2
        assert (await vault.store.get("bob", 2, "legacy")).document == {"story": "older"}

    async def test_failures_are_collected(self):
        store = FailingStore(RuntimeError("read only"), failures=1)
        vault = WorksheetVault(store=store, cipher=ReversingCipher(), write_timeout=2, autosave_enabled=False)
        store.failures = 0
        await store.upsert("alice", 1, "legacy", {"notes": "plain"})
        store.failures = 1

        with patch("worksheet_vault.core.maintenance.logger"):
            report = await reencrypt_plaintext(vault)

        assert report.records_rewritten == 0
        assert len(report.errors) == 1
        assert "read only" in report.errors[0]

    @pytest.mark.parametrize("backend", ["memory", "sqlite"])
    async def test_completion_time_survives_rewrite(self, backend, tmp_path):
        store = InMemoryRecordStore() if backend == "memory" else SQLiteRecordStore(str(tmp_path / "w.db"))
        vault = WorksheetVault(store=store, cipher=ReversingCipher(), write_timeout=2, autosave_enabled=False)
        finished = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
        await store.upsert("alice", 1, "legacy", {"journal": "old"}, completed=True, completed_at=finished)

        report = await reencrypt_plaintext(vault)

        assert report.records_rewritten == 1
        stored = await store.get("alice", 1, "legacy")
        assert stored.document["journal"] == "rev:dlo"
        assert stored.completed is True
        assert stored.completed_at == finished
