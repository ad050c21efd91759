"""
Plaintext audit and re-encryption of stored worksheet documents.

Sensitive fields can reach storage unencrypted through the encrypt fallback
or through records written before a field name was classified. These routines
find such fields and optionally rewrite the affected records through the gateway.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from util.logging import audit_event, logger

from .schema import RecordKey
from .service import WorksheetVault


@dataclass
class PlaintextFinding:
    owner_id: str
    phase_number: int
    worksheet_id: str
    fields: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "phase_number": self.phase_number,
            "worksheet_id": self.worksheet_id,
            "fields": list(self.fields),
        }


@dataclass
class MaintenanceReport:
    """Result of an audit or re-encryption pass."""
    operation: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    records_scanned: int = 0
    findings: List[PlaintextFinding] = field(default_factory=list)
    records_rewritten: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def issues_found(self) -> int:
        return sum(len(f.fields) for f in self.findings)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "operation": self.operation,
            "started_at": self.started_at.isoformat(),
            "records_scanned": self.records_scanned,
            "issues_found": self.issues_found,
            "records_rewritten": self.records_rewritten,
            "findings": [f.to_dict() for f in self.findings],
            "errors": self.errors,
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data


async def audit_plaintext(vault: WorksheetVault, owner_ids: Optional[Iterable[str]] = None) -> MaintenanceReport:
    """
    Scan stored documents for sensitive fields held in plaintext.

    Args:
        vault: Vault whose store and codec are inspected
        owner_ids: Users to scan; every user in the store when omitted

    Returns:
        MaintenanceReport listing one finding per affected record
    """
    report = MaintenanceReport(operation="audit_plaintext", started_at=datetime.now(timezone.utc))
    owners = list(owner_ids) if owner_ids is not None else await vault.store.list_owners()

    for owner_id in owners:
        for record in await vault.store.list_for_owner(owner_id):
            report.records_scanned += 1
            paths = await vault.codec.find_plaintext_fields(record.document)
            if paths:
                report.findings.append(
                    PlaintextFinding(record.owner_id, record.group_key, record.record_key, paths)
                )

    report.completed_at = datetime.now(timezone.utc)
    audit_event("maintenance.audit_plaintext",
                {"records_scanned": report.records_scanned, "issues_found": report.issues_found})
    return report


async def reencrypt_plaintext(vault: WorksheetVault, owner_ids: Optional[Iterable[str]] = None,
                              dry_run: bool = False) -> MaintenanceReport:
    """
    Rewrite every record with plaintext sensitive fields so they are encrypted.

    Each record is read through the gateway (plaintext survives the decode
    untouched) and written back with its completion flag and original
    completion time, which encrypts the fields under the current cipher.
    A record that fails to rewrite is reported in errors and the pass continues.
    """
    audit = await audit_plaintext(vault, owner_ids)
    report = MaintenanceReport(
        operation="reencrypt_plaintext",
        started_at=audit.started_at,
        records_scanned=audit.records_scanned,
        findings=audit.findings,
    )

    if not dry_run:
        for finding in audit.findings:
            key = RecordKey(finding.owner_id, finding.phase_number, finding.worksheet_id)
            try:
                record = await vault.gateway.read(key)
                if record is None:
                    continue
                await vault.gateway.write(key, record.document, completed=record.completed,
                                          completed_at=record.completed_at)
                report.records_rewritten += 1
            except Exception as e:
                logger.error(f"Re-encryption failed for worksheet '{finding.worksheet_id}': {e}")
                report.errors.append(f"{finding.owner_id}/{finding.phase_number}/{finding.worksheet_id}: {e}")

    report.completed_at = datetime.now(timezone.utc)
    audit_event("maintenance.reencrypt_plaintext",
                {"records_rewritten": report.records_rewritten, "errors": len(report.errors), "dry_run": dry_run})
    return report
