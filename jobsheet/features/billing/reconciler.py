"""
Webhook reconciler: applies verified billing-provider events to the
entitlement record store.

Flow:
1. Verify the signature on the raw body (InvalidSignature otherwise)
2. Dispatch by event kind through a handler table
3. Acknowledge everything except signature failures and datastore errors;
   those two are the only cases the provider should redeliver

Every handler is idempotent: redelivery and out-of-order delivery converge
on the same record, and emails are gated on a write that actually changed
status.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from jobsheet.core.clock import Clock, utc_now
from jobsheet.core.errors import DatastoreUnavailable, InvalidSignature, ReconciliationFailed
from jobsheet.core.metrics import billing_webhook_events_total
from jobsheet.features.billing import transitions
from jobsheet.features.billing.activation import (
    SubscriptionActivator,
    SubscriptionNotifier,
    record_transition,
)
from jobsheet.features.billing.provider import (
    BillingEvent,
    BillingProvider,
    BillingWebhookError,
    EventKind,
    MalformedEventError,
)
from jobsheet.features.entitlements.store import EntitlementStore, WriteOutcome
from jobsheet.features.notifications.templates import NotificationTemplate
from jobsheet.models.entitlement import SubscriptionStatus


logger = logging.getLogger(__name__)

OUTCOME_APPLIED = "applied"
OUTCOME_NOOP = "noop"
OUTCOME_IGNORED = "ignored"
OUTCOME_MALFORMED = "malformed"


@dataclass(frozen=True)
class ReconcileResult:
    event_id: Optional[str]
    kind: str
    outcome: str


class WebhookReconciler:
    def __init__(
        self,
        provider: BillingProvider,
        store: EntitlementStore,
        activator: SubscriptionActivator,
        notifier: SubscriptionNotifier,
        clock: Clock = utc_now,
    ):
        self.provider = provider
        self.store = store
        self.activator = activator
        self.notifier = notifier
        self.clock = clock
        self._handlers: Dict[EventKind, Callable[[BillingEvent], str]] = {
            EventKind.CHECKOUT_COMPLETED: self._on_checkout_completed,
            EventKind.SUBSCRIPTION_UPDATED: self._on_subscription_updated,
            EventKind.SUBSCRIPTION_DELETED: self._on_subscription_deleted,
            EventKind.UNRECOGNIZED: self._on_unrecognized,
        }

    def handle(self, raw_payload: bytes, signature_header: Optional[str]) -> ReconcileResult:
        """
        Verify and apply one webhook delivery.

        Raises:
            InvalidSignature: Signature missing or wrong; nothing was parsed
            DatastoreUnavailable / ReconciliationFailed: Transient store
                failure; the caller must not acknowledge so the provider retries
        """
        try:
            event = self.provider.verify_event(raw_payload, signature_header)
        except BillingWebhookError as e:
            billing_webhook_events_total.inc(labels={"kind": "unknown", "outcome": "invalid_signature"})
            logger.warning("billing.webhook.invalid_signature", extra={"error_code": "invalid_signature"})
            raise InvalidSignature(str(e)) from e
        except MalformedEventError as e:
            return self._acknowledge_malformed(e.event_id, "unknown", str(e))

        handler = self._handlers[event.kind]
        try:
            outcome = handler(event)
        except MalformedEventError as e:
            return self._acknowledge_malformed(event.event_id, event.kind.value, str(e))
        except (DatastoreUnavailable, ReconciliationFailed) as e:
            billing_webhook_events_total.inc(labels={"kind": event.kind.value, "outcome": "error"})
            logger.error(
                "billing.webhook.store_failed",
                extra={"event_id": event.event_id, "event_kind": event.kind.value, "error_code": e.code},
            )
            raise

        billing_webhook_events_total.inc(labels={"kind": event.kind.value, "outcome": outcome})
        logger.info(
            "billing.webhook.processed",
            extra={"event_id": event.event_id, "event_kind": event.kind.value, "outcome": outcome},
        )
        return ReconcileResult(event_id=event.event_id, kind=event.kind.value, outcome=outcome)

    def _acknowledge_malformed(self, event_id: Optional[str], kind: str, reason: str) -> ReconcileResult:
        billing_webhook_events_total.inc(labels={"kind": kind, "outcome": OUTCOME_MALFORMED})
        logger.warning(
            "billing.webhook.malformed",
            extra={"event_id": event_id, "event_kind": kind, "outcome": OUTCOME_MALFORMED, "reason": reason},
        )
        return ReconcileResult(event_id=event_id, kind=kind, outcome=OUTCOME_MALFORMED)

    def _on_checkout_completed(self, event: BillingEvent) -> str:
        if not event.account_id:
            logger.warning(
                "billing.webhook.checkout_without_account",
                extra={"event_id": event.event_id, "event_kind": event.kind.value, "outcome": OUTCOME_NOOP},
            )
            return OUTCOME_NOOP
        if not event.subscription_ref:
            raise MalformedEventError("checkout completion carries no subscription", event_id=event.event_id)

        outcome = self.activator.activate(
            event.account_id,
            customer_ref=event.customer_ref,
            subscription_ref=event.subscription_ref,
            customer_email=event.customer_email,
            event_at=event.created_at,
            source="webhook",
        )
        return OUTCOME_APPLIED if outcome.changed else OUTCOME_NOOP

    def _on_subscription_updated(self, event: BillingEvent) -> str:
        subscription_ref = self._require_subscription_ref(event)
        outcome = self.store.mutate(
            lambda: self.store.get_by_subscription_ref(subscription_ref),
            lambda current: transitions.apply_provider_status(
                current,
                provider_status=event.provider_status,
                now=self.clock(),
                event_at=event.created_at,
                current_period_end=event.current_period_end,
            ),
            operation="subscription_updated",
        )
        return self._finish(event, outcome, notify_cancel=False)

    def _on_subscription_deleted(self, event: BillingEvent) -> str:
        subscription_ref = self._require_subscription_ref(event)
        outcome = self.store.mutate(
            lambda: self.store.get_by_subscription_ref(subscription_ref),
            lambda current: transitions.cancel(current, now=self.clock(), event_at=event.created_at),
            operation="subscription_deleted",
        )
        if outcome.before is None and event.account_id:
            return self._cancel_before_checkout(event, subscription_ref)
        return self._finish(event, outcome, notify_cancel=True)

    def _cancel_before_checkout(self, event: BillingEvent, subscription_ref: str) -> str:
        """Deletion overtook its checkout: remember the subscription as ended."""
        outcome = self.store.mutate(
            lambda: self.store.get(event.account_id),
            lambda current: transitions.cancel_before_checkout(
                current,
                account_id=event.account_id,
                customer_ref=event.customer_ref,
                subscription_ref=subscription_ref,
                now=self.clock(),
                event_at=event.created_at,
            ),
            operation="subscription_deleted.early",
        )
        record_transition(outcome)
        logger.info(
            "billing.webhook.deleted_before_checkout",
            extra={
                "event_id": event.event_id,
                "event_kind": event.kind.value,
                "account_id": event.account_id,
                "outcome": OUTCOME_APPLIED if outcome.changed else OUTCOME_NOOP,
            },
        )
        return OUTCOME_APPLIED if outcome.changed else OUTCOME_NOOP

    def _on_unrecognized(self, event: BillingEvent) -> str:
        logger.info(
            "billing.webhook.unhandled_type",
            extra={"event_id": event.event_id, "event_kind": event.provider_type, "outcome": OUTCOME_IGNORED},
        )
        return OUTCOME_IGNORED

    def _require_subscription_ref(self, event: BillingEvent) -> str:
        if not event.subscription_ref:
            raise MalformedEventError("subscription event carries no subscription id", event_id=event.event_id)
        return event.subscription_ref

    def _finish(self, event: BillingEvent, outcome: WriteOutcome, *, notify_cancel: bool) -> str:
        if outcome.before is None:
            logger.info(
                "billing.webhook.unknown_subscription",
                extra={"event_id": event.event_id, "event_kind": event.kind.value, "outcome": OUTCOME_NOOP},
            )
            return OUTCOME_NOOP

        record_transition(outcome)
        if notify_cancel and outcome.moved(SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED):
            self.notifier.send(outcome.after.account_id, NotificationTemplate.SUBSCRIPTION_CANCELED)
        return OUTCOME_APPLIED if outcome.changed else OUTCOME_NOOP
