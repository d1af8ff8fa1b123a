"""
Entitlement read path used by every feature gate.

No side effects: a missing record is reported as `no_record`, never created.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from jobsheet.core.clock import Clock, utc_now
from jobsheet.features.entitlements.evaluator import EntitlementDecision, evaluate
from jobsheet.features.entitlements.store import EntitlementStore


@dataclass(frozen=True)
class EntitlementView:
    account_id: str
    decision: EntitlementDecision
    status: Optional[str]
    trial_end: Optional[datetime]
    subscription_end: Optional[datetime]
    evaluated_at: datetime


class EntitlementService:
    def __init__(self, store: EntitlementStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def get_entitlement(self, account_id: str) -> EntitlementView:
        now = self.clock()
        record = self.store.get(account_id)
        return EntitlementView(
            account_id=account_id,
            decision=evaluate(record, now),
            status=record.status.value if record else None,
            trial_end=record.trial_end if record else None,
            subscription_end=record.subscription_end if record else None,
            evaluated_at=now,
        )

    def has_access(self, account_id: str) -> bool:
        return self.get_entitlement(account_id).decision.has_access
