#!/usr/bin/env python3
"""
Command-line audit of sensitive worksheet fields stored without encryption.

Finds fields written in plaintext by the encrypt fallback or by records that
predate a keyword, and optionally re-encrypts them in place.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add the repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from worksheet_vault.core.errors import WorksheetVaultError
from worksheet_vault.core.maintenance import MaintenanceReport, audit_plaintext, reencrypt_plaintext
from worksheet_vault.core.service import WorksheetVault


def format_report(report: MaintenanceReport) -> str:
    """Format a maintenance report for display."""
    lines = [f"Operation: {report.operation}"]
    if report.completed_at and report.started_at:
        duration = report.completed_at - report.started_at
        lines.append(f"Duration: {duration.total_seconds():.2f} seconds")

    if report.errors:
        lines.append(f"Status: FAILED ({len(report.errors)} errors)")
    elif report.issues_found > 0:
        lines.append(f"Status: PLAINTEXT FOUND ({report.issues_found} fields)")
    else:
        lines.append("Status: CLEAN")

    lines.append(f"Records Scanned: {report.records_scanned}")
    if report.records_rewritten:
        lines.append(f"Records Re-encrypted: {report.records_rewritten}")

    for finding in report.findings:
        lines.append(f"  {finding.owner_id} phase {finding.phase_number} '{finding.worksheet_id}':")
        for path in finding.fields:
            lines.append(f"    - {path}")

    for error in report.errors:
        lines.append(f"Error: {error}")

    return "\n".join(lines)


async def run(args) -> MaintenanceReport:
    vault = WorksheetVault.from_config(store_backend="sqlite")
    try:
        if args.reencrypt:
            return await reencrypt_plaintext(vault, args.user or None, dry_run=args.dry_run)
        return await audit_plaintext(vault, args.user or None)
    finally:
        vault.shutdown()


def main():
    parser = argparse.ArgumentParser(
        description="Audit worksheet storage for sensitive fields held in plaintext",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                          # Audit every user
  %(prog)s --user alice --user bob  # Audit selected users
  %(prog)s --reencrypt --dry-run    # Show what would be re-encrypted
  %(prog)s --reencrypt              # Re-encrypt plaintext fields in place

Environment variables:
- DB_PATH=./data/worksheets.db
- FIELD_ENCRYPTION_PASSWORD=... (must match the key used by the API)
- FIELD_ENCRYPTION_SALT=...
        """
    )

    parser.add_argument(
        "--user", "-u",
        action="append",
        help="Limit the audit to this user id (repeatable)"
    )

    parser.add_argument(
        "--reencrypt", "-r",
        action="store_true",
        help="Rewrite affected records so their sensitive fields are encrypted"
    )

    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="With --reencrypt, report without rewriting"
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON"
    )

    args = parser.parse_args()

    try:
        report = asyncio.run(run(args))
    except WorksheetVaultError as e:
        print(f"Audit failed: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(format_report(report))

    if report.errors:
        return 1
    if report.issues_found and not (args.reencrypt and not args.dry_run):
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
