"""
Subscription activation shared by the webhook reconciler and the
verification endpoint.

Both writers race for the same record; whichever wins performs the
transition and sends the "subscription started" email. The loser sees the
same subscription already active and does nothing, so the email goes out
once per transition.
"""

import logging
from datetime import datetime
from typing import Optional

from jobsheet.core.clock import Clock, utc_now
from jobsheet.core.metrics import entitlement_transitions_total
from jobsheet.features.billing import transitions
from jobsheet.features.entitlements.store import EntitlementStore, WriteOutcome
from jobsheet.features.notifications.directory import AccountDirectory, NullAccountDirectory
from jobsheet.features.notifications.sender import LoggingNotificationSender, NotificationSender
from jobsheet.features.notifications.templates import NotificationTemplate
from jobsheet.models.entitlement import SubscriptionStatus


logger = logging.getLogger(__name__)


def record_transition(outcome: WriteOutcome) -> None:
    if not outcome.changed or outcome.after is None:
        return
    before = outcome.before.status.value if outcome.before else "none"
    after = outcome.after.status.value
    if before != after:
        entitlement_transitions_total.inc(labels={"from_status": before, "to_status": after})


class SubscriptionNotifier:
    """Resolves the recipient and sends lifecycle emails."""

    def __init__(
        self,
        sender: Optional[NotificationSender] = None,
        directory: Optional[AccountDirectory] = None,
        app_url: str = "",
    ):
        self.sender = sender or LoggingNotificationSender()
        self.directory = directory or NullAccountDirectory()
        self.app_url = app_url

    def send(self, account_id: str, template: NotificationTemplate, *, email: Optional[str] = None, **variables) -> bool:
        recipient = email or self.directory.email_for(account_id)
        if not recipient:
            logger.warning(
                "notifications.no_recipient",
                extra={"account_id": account_id, "template": template.value, "outcome": "skipped"},
            )
            return False
        return self.sender.notify(
            recipient,
            template,
            {
                "account_id": account_id,
                "app_url": self.app_url,
                "name": recipient.split("@")[0],
                **variables,
            },
        )


class SubscriptionActivator:
    def __init__(
        self,
        store: EntitlementStore,
        notifier: SubscriptionNotifier,
        clock: Clock = utc_now,
        period_months: int = 1,
    ):
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.period_months = period_months

    def activate(
        self,
        account_id: str,
        *,
        customer_ref: Optional[str],
        subscription_ref: str,
        customer_email: Optional[str] = None,
        event_at: Optional[datetime] = None,
        source: str,
    ) -> WriteOutcome:
        """
        Apply the activation effect: set billing refs, status=active,
        subscription_end = now + period, clear the trial.

        Creates the record if the account has none (compare-and-insert),
        merges into whatever is there otherwise.

        Raises:
            ReconciliationFailed: If conflicting writes outlast the retry limit
            DatastoreUnavailable: If the store cannot be reached
        """
        outcome = self.store.mutate(
            lambda: self.store.get(account_id),
            lambda current: transitions.activate(
                current,
                account_id=account_id,
                customer_ref=customer_ref,
                subscription_ref=subscription_ref,
                now=self.clock(),
                period_months=self.period_months,
                event_at=event_at,
            ),
            operation=f"activate.{source}",
        )
        record_transition(outcome)

        if outcome.entered(SubscriptionStatus.ACTIVE):
            logger.info(
                "billing.subscription.activated",
                extra={"account_id": account_id, "outcome": "activated", "source": source},
            )
            self.notifier.send(account_id, NotificationTemplate.SUBSCRIPTION_STARTED, email=customer_email)
        elif outcome.changed:
            logger.info(
                "billing.subscription.replaced",
                extra={"account_id": account_id, "outcome": "replaced", "source": source},
            )
        else:
            logger.info(
                "billing.subscription.activation_noop",
                extra={"account_id": account_id, "outcome": "noop", "source": source},
            )
        return outcome
