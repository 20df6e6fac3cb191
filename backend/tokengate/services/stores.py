"""Persistent record stores for accounts, ledger logs and payments.

The services above this module assume only what a plain record store gives:
each method touches a single row and commits on its own, and conditional
updates (compare-and-set) are atomic per row. Nothing here spans rows in one
database transaction.

Every call is bounded by ``STORE_TIMEOUT_SECONDS``; timeouts and driver errors
surface as ``StoreUnavailable``. Unique-key conflicts surface as
``DuplicateRecord`` so callers can treat them as idempotent replays; any
other integrity failure (CHECK, foreign key) is a ``ConstraintViolation``.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Optional, TypeVar

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.core.config import settings
from tokengate.core.errors import ConstraintViolation, StoreUnavailable
from tokengate.models.account import Account
from tokengate.models.ledger_entry import LedgerEntry, LedgerEntryType
from tokengate.models.payment_transaction import PaymentStatus, PaymentTransaction
from tokengate.models.subscription_extension import SubscriptionExtension
from tokengate.models.usage_record import UsageRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE for unique_violation (PostgreSQL)
UNIQUE_VIOLATION = "23505"


class DuplicateRecord(Exception):
    """Raised when an insert violates a unique constraint."""

    pass


class BaseStore:
    """Shared timeout and error translation for store implementations."""

    def __init__(self, db: AsyncSession, timeout: Optional[float] = None):
        """Initialize the store.

        Args:
            db: Database session
            timeout: Per-call timeout in seconds (defaults to settings)
        """
        self.db = db
        self.timeout = settings.STORE_TIMEOUT_SECONDS if timeout is None else timeout

    async def _run(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except IntegrityError as e:
            await self._rollback()
            if _is_unique_violation(e):
                raise DuplicateRecord(f"{operation}: {e.orig}") from e
            logger.error(f"Store call {operation} broke a constraint: {e.orig}")
            raise ConstraintViolation(f"{operation} broke a constraint: {e.orig}") from e
        except asyncio.TimeoutError as e:
            await self._rollback()
            logger.error(f"Store call {operation} timed out after {self.timeout}s")
            raise StoreUnavailable(f"{operation} timed out") from e
        except SQLAlchemyError as e:
            await self._rollback()
            logger.error(f"Store call {operation} failed: {e}")
            raise StoreUnavailable(f"{operation} failed: {e}") from e

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as e:
            logger.warning(f"Rollback after store failure also failed: {e}")


def _is_unique_violation(error: IntegrityError) -> bool:
    """True if an integrity error is a unique-key conflict."""
    orig = error.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None:
        return code == UNIQUE_VIOLATION
    message = str(orig).lower()
    return "unique constraint" in message or "duplicate key" in message


def _match(column, value):
    """Equality clause that also matches NULL."""
    return column.is_(None) if value is None else column == value


class ProfileStore(BaseStore):
    """Account records: read, partial update, and per-row compare-and-set."""

    async def get(self, user_id: str) -> Optional[Account]:
        async def _get() -> Optional[Account]:
            stmt = (
                select(Account)
                .where(Account.id == user_id)
                .execution_options(populate_existing=True)
            )
            result = await self.db.execute(stmt)
            return result.scalar_one_or_none()

        return await self._run("profile.get", _get())

    async def get_or_create(
        self,
        user_id: str,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> Account:
        """Get the account for a user, creating an empty one on first access."""
        account = await self.get(user_id)
        if account is not None:
            return account

        async def _create() -> Account:
            account = Account(id=user_id, email=email, full_name=full_name, balance=0)
            self.db.add(account)
            await self.db.commit()
            await self.db.refresh(account)
            return account

        try:
            account = await self._run("profile.create", _create())
            logger.info(f"Created account for user {user_id}")
            return account
        except DuplicateRecord:
            # Created concurrently by another request
            account = await self.get(user_id)
            if account is None:
                raise StoreUnavailable(f"Account {user_id} vanished after insert race")
            return account

    async def update(self, user_id: str, **changes: Any) -> Optional[Account]:
        """Unconditionally apply a partial update and return the fresh row."""

        async def _update() -> int:
            stmt = (
                update(Account)
                .where(Account.id == user_id)
                .values(**changes)
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            await self.db.commit()
            return result.rowcount

        updated = await self._run("profile.update", _update())
        if not updated:
            return None
        return await self.get(user_id)

    async def compare_and_set(
        self,
        user_id: str,
        expected: dict[str, Any],
        changes: dict[str, Any],
    ) -> bool:
        """Apply ``changes`` only if every column in ``expected`` still matches.

        Returns:
            True if the row was updated, False if it changed underneath us
        """

        async def _cas() -> int:
            conditions = [Account.id == user_id]
            conditions.extend(
                _match(getattr(Account, name), value) for name, value in expected.items()
            )
            stmt = (
                update(Account)
                .where(and_(*conditions))
                .values(**changes)
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            await self.db.commit()
            return result.rowcount

        return await self._run("profile.compare_and_set", _cas()) == 1


class LedgerLogStore(BaseStore):
    """Append-only ledger entries and usage records."""

    async def append_entry(self, entry: LedgerEntry) -> LedgerEntry:
        async def _append() -> LedgerEntry:
            self.db.add(entry)
            await self.db.commit()
            await self.db.refresh(entry)
            return entry

        return await self._run("ledger.append_entry", _append())

    async def append_usage(self, record: UsageRecord) -> UsageRecord:
        async def _append() -> UsageRecord:
            self.db.add(record)
            await self.db.commit()
            await self.db.refresh(record)
            return record

        return await self._run("ledger.append_usage", _append())

    async def query(self, user_id: str, limit: int = 50) -> list[LedgerEntry]:
        """Most recent ledger entries first."""

        async def _query() -> list[LedgerEntry]:
            stmt = (
                select(LedgerEntry)
                .where(LedgerEntry.user_id == user_id)
                .order_by(LedgerEntry.id.desc())
                .limit(limit)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._run("ledger.query", _query())

    async def replay(self, user_id: str) -> list[LedgerEntry]:
        """All ledger entries for a user in the order they were written."""

        async def _replay() -> list[LedgerEntry]:
            stmt = (
                select(LedgerEntry)
                .where(LedgerEntry.user_id == user_id)
                .order_by(LedgerEntry.id.asc())
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._run("ledger.replay", _replay())

    async def query_usage(self, user_id: str, limit: int = 100) -> list[UsageRecord]:
        async def _query() -> list[UsageRecord]:
            stmt = (
                select(UsageRecord)
                .where(UsageRecord.user_id == user_id)
                .order_by(UsageRecord.created_at.desc())
                .limit(limit)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._run("ledger.query_usage", _query())

    async def get_usage(self, usage_id: str) -> Optional[UsageRecord]:
        async def _get() -> Optional[UsageRecord]:
            result = await self.db.execute(
                select(UsageRecord).where(UsageRecord.id == usage_id)
            )
            return result.scalar_one_or_none()

        return await self._run("ledger.get_usage", _get())

    async def find_entry(
        self,
        entry_type: LedgerEntryType,
        transaction_id: Optional[str] = None,
        usage_id: Optional[str] = None,
    ) -> Optional[LedgerEntry]:
        """Look up the entry of a type written for a payment order or usage."""
        if transaction_id is None and usage_id is None:
            raise ValueError("transaction_id or usage_id is required")

        async def _find() -> Optional[LedgerEntry]:
            stmt = select(LedgerEntry).where(LedgerEntry.type == entry_type)
            if transaction_id is not None:
                stmt = stmt.where(LedgerEntry.transaction_id == transaction_id)
            if usage_id is not None:
                stmt = stmt.where(LedgerEntry.usage_id == usage_id)
            result = await self.db.execute(stmt.limit(1))
            return result.scalar_one_or_none()

        return await self._run("ledger.find_entry", _find())


class PaymentStore(BaseStore):
    """Payment transactions and their settlement lease."""

    async def create(self, transaction: PaymentTransaction) -> PaymentTransaction:
        async def _create() -> PaymentTransaction:
            self.db.add(transaction)
            await self.db.commit()
            await self.db.refresh(transaction)
            return transaction

        return await self._run("payment.create", _create())

    async def get(self, order_id: str) -> Optional[PaymentTransaction]:
        async def _get() -> Optional[PaymentTransaction]:
            stmt = (
                select(PaymentTransaction)
                .where(PaymentTransaction.order_id == order_id)
                .execution_options(populate_existing=True)
            )
            result = await self.db.execute(stmt)
            return result.scalar_one_or_none()

        return await self._run("payment.get", _get())

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[PaymentTransaction]:
        async def _list() -> list[PaymentTransaction]:
            stmt = (
                select(PaymentTransaction)
                .where(PaymentTransaction.user_id == user_id)
                .order_by(PaymentTransaction.id.desc())
                .limit(limit)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._run("payment.list_for_user", _list())

    async def update(self, order_id: str, **changes: Any) -> bool:
        return await self._conditional_update(
            "payment.update", [PaymentTransaction.order_id == order_id], changes
        )

    async def claim(
        self,
        order_id: str,
        claim_token: str,
        now: datetime,
        lease_until: datetime,
    ) -> bool:
        """Take the settlement lease on a pending transaction.

        Succeeds only if the transaction is pending and nobody holds an
        unexpired lease on it.
        """
        conditions = [
            PaymentTransaction.order_id == order_id,
            PaymentTransaction.status == PaymentStatus.PENDING,
            or_(
                PaymentTransaction.claim_token.is_(None),
                PaymentTransaction.claim_expires_at < now,
            ),
        ]
        return await self._conditional_update(
            "payment.claim",
            conditions,
            {"claim_token": claim_token, "claim_expires_at": lease_until},
        )

    async def finalize(
        self,
        order_id: str,
        claim_token: str,
        status: PaymentStatus,
        **changes: Any,
    ) -> bool:
        """Write a terminal status and drop the lease, if we still hold it."""
        conditions = [
            PaymentTransaction.order_id == order_id,
            PaymentTransaction.status == PaymentStatus.PENDING,
            PaymentTransaction.claim_token == claim_token,
        ]
        values = {"status": status, "claim_token": None, "claim_expires_at": None}
        values.update(changes)
        return await self._conditional_update("payment.finalize", conditions, values)

    async def release(self, order_id: str, claim_token: str, **changes: Any) -> bool:
        """Drop the lease without changing the status."""
        conditions = [
            PaymentTransaction.order_id == order_id,
            PaymentTransaction.claim_token == claim_token,
        ]
        values = {"claim_token": None, "claim_expires_at": None}
        values.update(changes)
        return await self._conditional_update("payment.release", conditions, values)

    async def _conditional_update(
        self, operation: str, conditions: list, values: dict[str, Any]
    ) -> bool:
        async def _update() -> int:
            stmt = (
                update(PaymentTransaction)
                .where(and_(*conditions))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            await self.db.commit()
            return result.rowcount

        return await self._run(operation, _update()) == 1


class ExtensionStore(BaseStore):
    """Subscription extensions keyed by payment order."""

    async def get(self, order_id: str) -> Optional[SubscriptionExtension]:
        async def _get() -> Optional[SubscriptionExtension]:
            result = await self.db.execute(
                select(SubscriptionExtension).where(
                    SubscriptionExtension.order_id == order_id
                )
            )
            return result.scalar_one_or_none()

        return await self._run("extension.get", _get())

    async def record(self, extension: SubscriptionExtension) -> bool:
        """Insert an extension row.

        Returns:
            True if inserted, False if the order already has one
        """

        async def _record() -> SubscriptionExtension:
            self.db.add(extension)
            await self.db.commit()
            return extension

        try:
            await self._run("extension.record", _record())
        except DuplicateRecord:
            return False
        return True
