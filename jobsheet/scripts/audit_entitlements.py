#!/usr/bin/env python3
"""
Entitlement invariant audit.

Scans every entitlement record and prints the rows that break the record
invariants. Read-only: it never patches a row.

Usage:
    python -m jobsheet.scripts.audit_entitlements [--database-url URL] [--limit N] [--json]

Exit code is 1 when issues were found, 0 otherwise.
"""
import argparse
import json
import sys
from typing import List, Optional

from jobsheet.core.clock import utc_now
from jobsheet.core.config import settings
from jobsheet.core.database import Database
from jobsheet.core.logging import configure_logging
from jobsheet.features.entitlements.audit import run_invariant_audit
from jobsheet.features.entitlements.store import EntitlementStore


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Audit entitlement record invariants")
    parser.add_argument("--database-url", default=settings.DATABASE_URL)
    parser.add_argument("--limit", type=int, default=None)
    parser.add_argument("--json", action="store_true", help="Print the full report as JSON")
    args = parser.parse_args(argv)

    configure_logging(settings.ENV)
    database = Database(args.database_url, timeout_seconds=settings.DB_TIMEOUT_SECONDS)
    try:
        report = run_invariant_audit(EntitlementStore(database), utc_now(), limit=args.limit)
    finally:
        database.dispose()

    if args.json:
        print(json.dumps(report, indent=2))
    else:
        print(f"Scanned {report['records_scanned']} records, {report['issues_found']} issue(s)")
        for issue in report["issues"]:
            print(f"  {issue['account_id']}: {issue['type']} (status={issue['status']})")

    return 1 if report["issues_found"] else 0


if __name__ == "__main__":
    sys.exit(main())
