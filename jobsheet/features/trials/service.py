"""
Trial grant issuer.

One-time creation of a time-boxed trial record for an account with no record.
Never overwrites: repeated calls cannot reset a trial.
"""

import logging
from datetime import timedelta

from jobsheet.core.clock import Clock, utc_now
from jobsheet.core.errors import ValidationError
from jobsheet.core.metrics import entitlement_transitions_total
from jobsheet.features.entitlements.store import EntitlementStore
from jobsheet.models.entitlement import EntitlementRecord, SubscriptionStatus


logger = logging.getLogger(__name__)

TRIAL_HOURS_DEFAULT = 72


class TrialGrantIssuer:
    def __init__(self, store: EntitlementStore, clock: Clock = utc_now, trial_hours: int = TRIAL_HOURS_DEFAULT):
        self.store = store
        self.clock = clock
        self.trial_length = timedelta(hours=trial_hours)

    def grant_trial(self, account_id: str) -> EntitlementRecord:
        """
        Create a trial record for the account.

        Returns:
            The newly created record

        Raises:
            AlreadyExists: If the account already has a record (caller should
                read the existing one instead)
            DatastoreUnavailable: If the store cannot be reached
        """
        if not account_id or not account_id.strip():
            raise ValidationError("account_id is required")

        now = self.clock()
        record = EntitlementRecord(
            account_id=account_id,
            status=SubscriptionStatus.TRIAL,
            trial_end=now + self.trial_length,
            created_at=now,
            updated_at=now,
        )
        created = self.store.create(record)
        entitlement_transitions_total.inc(labels={"from_status": "none", "to_status": SubscriptionStatus.TRIAL.value})
        logger.info(
            "trials.granted",
            extra={"account_id": account_id, "trial_end": created.trial_end.isoformat()},
        )
        return created
