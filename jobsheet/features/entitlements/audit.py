"""
Read-only invariant audit over all entitlement records.

Reports rows that break the record invariants (usually the result of
out-of-band admin patches). Never writes: fixing rows is left to the
operator tooling that caused them.
"""
from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Optional

from jobsheet.core.metrics import entitlement_audit_issues
from jobsheet.features.entitlements.evaluator import evaluate
from jobsheet.features.entitlements.store import EntitlementStore
from jobsheet.models.entitlement import invariant_violations


logger = logging.getLogger(__name__)


def run_invariant_audit(store: EntitlementStore, now: datetime, limit: Optional[int] = None) -> Dict[str, Any]:
    issues = []
    by_status: Counter = Counter()
    with_access = 0

    records = store.list_records(limit=limit)
    for record in records:
        by_status[record.status.value] += 1
        if evaluate(record, now).has_access:
            with_access += 1
        for issue in invariant_violations(record):
            issues.append({
                "type": issue,
                "account_id": record.account_id,
                "status": record.status.value,
            })

    issue_counts = Counter(issue["type"] for issue in issues)
    entitlement_audit_issues.replace(issue_counts)

    if issues:
        logger.warning(
            "entitlements.audit.issues",
            extra={"outcome": "issues_found", "issues_found": len(issues)},
        )
    else:
        logger.info("entitlements.audit.clean", extra={"outcome": "clean"})

    return {
        "records_scanned": len(records),
        "records_with_access": with_access,
        "by_status": dict(by_status),
        "issues_found": len(issues),
        "issues": issues,
        "timestamp": now.isoformat(),
    }
