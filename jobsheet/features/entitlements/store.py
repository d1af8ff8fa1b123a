"""
Entitlement record store.

Point lookups by account and by billing subscription reference, plus the two
conditional writes every writer goes through:
- create: compare-and-insert, fails with AlreadyExists if a record exists
- compare_and_swap: update guarded by the record version, fails with
  DatastoreWriteConflict if another writer got there first

`mutate` wraps both in a bounded optimistic-concurrency loop (fresh read on
every attempt). Nothing here takes a pessimistic lock.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from jobsheet.core.clock import ensure_utc
from jobsheet.core.database import Database, entitlement_records
from jobsheet.core.errors import (
    AlreadyExists,
    DatastoreUnavailable,
    DatastoreWriteConflict,
    ReconciliationFailed,
)
from jobsheet.core.metrics import entitlement_write_conflicts_total
from jobsheet.models.entitlement import (
    EntitlementRecord,
    SubscriptionStatus,
    invariant_violations,
)


logger = logging.getLogger(__name__)

Loader = Callable[[], Optional[EntitlementRecord]]
Change = Callable[[Optional[EntitlementRecord]], Optional[EntitlementRecord]]


@dataclass(frozen=True)
class WriteOutcome:
    """Result of a conditional write: the record before and after, and whether a row changed."""
    before: Optional[EntitlementRecord]
    after: Optional[EntitlementRecord]
    changed: bool

    def entered(self, status: SubscriptionStatus) -> bool:
        """True only when this write moved the record into `status`."""
        if not self.changed or self.after is None or self.after.status is not status:
            return False
        return self.before is None or self.before.status is not status

    def moved(self, from_status: SubscriptionStatus, to_status: SubscriptionStatus) -> bool:
        return (
            self.changed
            and self.before is not None
            and self.after is not None
            and self.before.status is from_status
            and self.after.status is to_status
        )


def _to_record(row) -> EntitlementRecord:
    return EntitlementRecord(
        account_id=row.account_id,
        status=SubscriptionStatus(row.status),
        trial_end=ensure_utc(row.trial_end),
        subscription_end=ensure_utc(row.subscription_end),
        billing_customer_ref=row.billing_customer_ref,
        billing_subscription_ref=row.billing_subscription_ref,
        last_event_at=ensure_utc(row.last_event_at),
        version=row.version,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def _column_values(record: EntitlementRecord) -> Dict[str, Any]:
    return {
        "status": record.status.value,
        "trial_end": record.trial_end,
        "subscription_end": record.subscription_end,
        "billing_customer_ref": record.billing_customer_ref,
        "billing_subscription_ref": record.billing_subscription_ref,
        "last_event_at": record.last_event_at,
        "updated_at": record.updated_at,
    }


def _check_writable(record: EntitlementRecord) -> None:
    issues = invariant_violations(record)
    if issues:
        raise ValueError(f"refusing to write entitlement record for {record.account_id}: {', '.join(issues)}")


class EntitlementStore:
    def __init__(self, database: Database, *, retry_limit: int = 3):
        self.database = database
        self.retry_limit = max(1, retry_limit)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (OperationalError, PoolTimeoutError) as exc:
            logger.error(
                "entitlements.store.unavailable",
                extra={"operation": operation, "error_code": "datastore_unavailable"},
            )
            raise DatastoreUnavailable(f"Entitlement store unavailable during {operation}") from exc

    def get(self, account_id: str) -> Optional[EntitlementRecord]:
        with self._guard("get"):
            with self.database.session() as session:
                row = session.execute(
                    select(entitlement_records).where(entitlement_records.c.account_id == account_id)
                ).first()
        return _to_record(row) if row else None

    def get_by_subscription_ref(self, subscription_ref: str) -> Optional[EntitlementRecord]:
        with self._guard("get_by_subscription_ref"):
            with self.database.session() as session:
                row = session.execute(
                    select(entitlement_records)
                    .where(entitlement_records.c.billing_subscription_ref == subscription_ref)
                    .order_by(entitlement_records.c.updated_at.desc())
                ).first()
        return _to_record(row) if row else None

    def list_records(self, limit: Optional[int] = None) -> List[EntitlementRecord]:
        stmt = select(entitlement_records).order_by(entitlement_records.c.account_id)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._guard("list_records"):
            with self.database.session() as session:
                rows = session.execute(stmt).fetchall()
        return [_to_record(row) for row in rows]

    def create(self, record: EntitlementRecord) -> EntitlementRecord:
        """Insert a new record; raises AlreadyExists if the account already has one."""
        _check_writable(record)
        try:
            with self._guard("create"):
                with self.database.session() as session:
                    session.execute(
                        insert(entitlement_records).values(
                            account_id=record.account_id,
                            created_at=record.created_at,
                            version=1,
                            **_column_values(record),
                        )
                    )
        except IntegrityError as exc:
            raise AlreadyExists(f"Entitlement record already exists for account {record.account_id}") from exc
        return record.model_copy(update={"version": 1})

    def compare_and_swap(self, expected: EntitlementRecord, proposed: EntitlementRecord) -> EntitlementRecord:
        """Write `proposed` only if the stored row is still at `expected.version`."""
        if proposed.account_id != expected.account_id:
            raise ValueError("compare_and_swap cannot change account_id")
        if proposed.updated_at < expected.updated_at:
            raise ValueError("updated_at must not move backwards")
        _check_writable(proposed)

        next_version = expected.version + 1
        with self._guard("compare_and_swap"):
            with self.database.session() as session:
                result = session.execute(
                    update(entitlement_records)
                    .where(entitlement_records.c.account_id == expected.account_id)
                    .where(entitlement_records.c.version == expected.version)
                    .values(version=next_version, **_column_values(proposed))
                )
                if result.rowcount != 1:
                    raise DatastoreWriteConflict(
                        f"Entitlement record for {expected.account_id} changed concurrently"
                    )
        return proposed.model_copy(update={"version": next_version, "created_at": expected.created_at})

    def mutate(self, load: Loader, change: Change, *, operation: str) -> WriteOutcome:
        """Read-modify-write under optimistic concurrency.

        Args:
            load: Fetches the current record (or None) fresh on every attempt
            change: Pure function returning the proposed record, or None for no-op
            operation: Label for logs and metrics

        Returns:
            WriteOutcome describing what was written (if anything)

        Raises:
            ReconciliationFailed: If every attempt lost a race
            DatastoreUnavailable: If the store cannot be reached
        """
        for attempt in range(1, self.retry_limit + 1):
            current = load()
            proposed = change(current)
            if proposed is None:
                return WriteOutcome(before=current, after=current, changed=False)
            try:
                if current is None:
                    stored = self.create(proposed)
                else:
                    stored = self.compare_and_swap(current, proposed)
            except (AlreadyExists, DatastoreWriteConflict):
                entitlement_write_conflicts_total.inc(labels={"operation": operation})
                logger.warning(
                    "entitlements.write_conflict",
                    extra={"account_id": proposed.account_id, "operation": operation, "attempt": attempt},
                )
                continue
            return WriteOutcome(before=current, after=stored, changed=True)

        raise ReconciliationFailed(
            f"Gave up on {operation} after {self.retry_limit} conflicting writes"
        )
