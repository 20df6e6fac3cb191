"""Token ledger: the only code path that changes an account's balance.

This service provides business logic for:
- Consuming tokens for a paid feature invocation (with usage record)
- Adding tokens (purchases and subscription bonuses)
- Refunding tokens tied to a usage record
- Reading balances and ledger history

Every balance change is a compare-and-set on the previously read balance,
retried a bounded number of times, and is paired with exactly one ledger
entry. When the paired write fails, the balance change is compensated
before the error surfaces, so the log always reconstructs the balance.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.core.config import settings
from tokengate.core.errors import (
    AccountNotFound,
    InsufficientBalance,
    InvariantViolation,
    StoreUnavailable,
    TokenGateError,
)
from tokengate.models.account import Account
from tokengate.models.ledger_entry import LedgerEntry, LedgerEntryType
from tokengate.models.usage_record import UsageRecord
from tokengate.services.stores import DuplicateRecord, LedgerLogStore, ProfileStore

logger = logging.getLogger(__name__)

CREDIT_TYPES = frozenset({LedgerEntryType.PURCHASE, LedgerEntryType.BONUS})


class TokenLedger:
    """Service for atomic, audited token balance mutations."""

    def __init__(
        self,
        db: AsyncSession,
        profiles: Optional[ProfileStore] = None,
        logs: Optional[LedgerLogStore] = None,
        max_retries: Optional[int] = None,
    ):
        """Initialize the token ledger.

        Args:
            db: Database session backing the default stores
            profiles: Optional account store (defaults to ProfileStore(db))
            logs: Optional ledger log store (defaults to LedgerLogStore(db))
            max_retries: Compare-and-set attempts per mutation
        """
        self.db = db
        self.profiles = profiles or ProfileStore(db)
        self.logs = logs or LedgerLogStore(db)
        self.max_retries = max_retries or settings.LEDGER_MAX_RETRIES

    async def balance(self, user_id: str) -> int:
        """Get the current token balance for a user.

        Users without an account have a balance of 0.

        Raises:
            InvariantViolation: If the stored balance is negative
        """
        account = await self.profiles.get(user_id)
        if account is None:
            return 0
        await self._check_invariants(account)
        return account.balance

    async def consume(
        self,
        user_id: str,
        feature_id: str,
        category: str,
        cost: int,
        external_units: Optional[int] = None,
    ) -> UsageRecord:
        """Charge a feature invocation against the user's balance.

        Args:
            user_id: The user's ID
            feature_id: Catalog id of the feature that ran
            category: Feature category
            cost: Tokens to consume (must be positive)
            external_units: Optional model-usage units reported by the feature

        Returns:
            The persisted UsageRecord

        Raises:
            ValueError: If cost is not positive
            AccountNotFound: If the user has no account
            InsufficientBalance: If balance < cost (nothing is written)
            InvariantViolation: If the account is frozen or inconsistent
            StoreUnavailable: If a store call fails (balance is restored)
        """
        if cost <= 0:
            raise ValueError("Cost must be positive")

        before, after = await self._apply_delta(user_id, -cost)

        try:
            usage = await self.logs.append_usage(
                UsageRecord(
                    user_id=user_id,
                    feature_id=feature_id,
                    category=category,
                    tokens_consumed=cost,
                    external_units_consumed=external_units,
                )
            )
        except (StoreUnavailable, DuplicateRecord) as e:
            logger.error(
                f"Usage record write failed for user {user_id} ({feature_id}); "
                f"restoring {cost} tokens: {e}"
            )
            await self._compensate(user_id, cost, cause=e)
            if isinstance(e, StoreUnavailable):
                raise
            raise StoreUnavailable(f"Failed to record usage: {e}") from e

        try:
            await self.logs.append_entry(
                LedgerEntry(
                    user_id=user_id,
                    type=LedgerEntryType.CONSUME,
                    amount=-cost,
                    balance_before=before,
                    balance_after=after,
                    usage_id=usage.id,
                    description=f"Used {cost} tokens for {feature_id}",
                )
            )
        except (StoreUnavailable, DuplicateRecord) as e:
            logger.error(
                f"Ledger entry write failed for usage {usage.id}; "
                f"restoring {cost} tokens to user {user_id}: {e}"
            )
            await self._compensate(user_id, cost, cause=e)
            if isinstance(e, StoreUnavailable):
                raise
            raise StoreUnavailable(f"Failed to record ledger entry: {e}") from e

        logger.info(
            f"Consumed {cost} tokens from user {user_id} for {feature_id}. "
            f"New balance: {after}"
        )
        return usage

    async def add(
        self,
        user_id: str,
        amount: int,
        entry_type: LedgerEntryType,
        transaction_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> bool:
        """Credit tokens from a purchase or bonus.

        When ``transaction_id`` is given, at most one credit of ``entry_type``
        is ever applied for it.

        Args:
            user_id: The user's ID
            amount: Number of tokens to add (must be positive)
            entry_type: PURCHASE or BONUS
            transaction_id: Optional payment order id the credit settles
            description: Optional human-readable description

        Returns:
            True if the credit was applied, False if it was already applied

        Raises:
            ValueError: If amount is not positive or the type is not a credit
            AccountNotFound: If the user has no account
            StoreUnavailable: If a store call fails
        """
        if amount <= 0:
            raise ValueError("Amount must be positive")
        if entry_type not in CREDIT_TYPES:
            raise ValueError("Use consume or refund for non-credit entries")

        if transaction_id is not None:
            existing = await self.logs.find_entry(entry_type, transaction_id=transaction_id)
            if existing is not None:
                logger.info(
                    f"Skipping duplicate {entry_type.value} credit for transaction "
                    f"{transaction_id} (entry {existing.id})"
                )
                return False

        before, after = await self._apply_delta(user_id, amount)

        try:
            await self.logs.append_entry(
                LedgerEntry(
                    user_id=user_id,
                    type=entry_type,
                    amount=amount,
                    balance_before=before,
                    balance_after=after,
                    transaction_id=transaction_id,
                    description=description or f"Added {amount} tokens",
                )
            )
        except DuplicateRecord:
            # Lost a race with a concurrent credit for the same transaction
            logger.warning(
                f"Concurrent duplicate {entry_type.value} credit for transaction "
                f"{transaction_id}; reverting {amount} tokens"
            )
            await self._compensate(user_id, -amount)
            return False
        except StoreUnavailable as e:
            await self._compensate(user_id, -amount, cause=e)
            raise

        logger.info(
            f"Added {amount} tokens to user {user_id} ({entry_type.value}). "
            f"New balance: {after}"
        )
        return True

    async def refund(
        self,
        user_id: str,
        usage_id: str,
        amount: int,
        reason: str,
    ) -> bool:
        """Refund tokens for a feature invocation that failed after charging.

        Args:
            user_id: The user's ID
            usage_id: The usage record being compensated
            amount: Tokens to refund (at most what the usage consumed)
            reason: Reason for the refund

        Returns:
            True if refunded; False if the usage record is unknown, belongs to
            another user, is smaller than ``amount``, or was already refunded
        """
        if amount <= 0:
            raise ValueError("Amount must be positive")

        usage = await self.logs.get_usage(usage_id)
        if usage is None or usage.user_id != user_id:
            logger.warning(f"Refund rejected: usage {usage_id} not found for user {user_id}")
            return False
        if amount > usage.tokens_consumed:
            logger.warning(
                f"Refund rejected: {amount} exceeds {usage.tokens_consumed} consumed "
                f"by usage {usage_id}"
            )
            return False

        existing = await self.logs.find_entry(LedgerEntryType.REFUND, usage_id=usage_id)
        if existing is not None:
            logger.info(f"Usage {usage_id} already refunded (entry {existing.id})")
            return False

        before, after = await self._apply_delta(user_id, amount)

        try:
            await self.logs.append_entry(
                LedgerEntry(
                    user_id=user_id,
                    type=LedgerEntryType.REFUND,
                    amount=amount,
                    balance_before=before,
                    balance_after=after,
                    usage_id=usage_id,
                    description=reason,
                )
            )
        except DuplicateRecord:
            await self._compensate(user_id, -amount)
            return False
        except StoreUnavailable as e:
            await self._compensate(user_id, -amount, cause=e)
            raise

        logger.info(f"Refunded {amount} tokens to user {user_id} for usage {usage_id}")
        return True

    async def history(self, user_id: str, limit: int = 50) -> list[LedgerEntry]:
        """Most recent ledger entries for a user."""
        return await self.logs.query(user_id, limit=limit)

    async def usage_history(self, user_id: str, limit: int = 100) -> list[UsageRecord]:
        """Most recent usage records for a user."""
        return await self.logs.query_usage(user_id, limit=limit)

    async def audit(self, user_id: str) -> bool:
        """Check that the ledger log reconstructs the stored balance.

        Every entry must satisfy balance_after == balance_before + amount and
        the amounts must sum to the current balance (accounts start at 0).
        A mismatch freezes the account.

        Returns:
            True if the log is consistent

        Raises:
            InvariantViolation: If it is not
        """
        account = await self._load(user_id)
        entries = await self.logs.replay(user_id)

        for entry in entries:
            if entry.balance_after != entry.balance_before + entry.amount:
                await self._freeze(user_id, f"entry {entry.id} does not add up")
            if entry.balance_after < 0:
                await self._freeze(user_id, f"entry {entry.id} leaves a negative balance")

        total = sum(entry.amount for entry in entries)
        if total != account.balance:
            await self._freeze(
                user_id, f"ledger sums to {total} but balance is {account.balance}"
            )
        return True

    async def _load(self, user_id: str) -> Account:
        account = await self.profiles.get(user_id)
        if account is None:
            raise AccountNotFound(user_id)
        if account.ledger_frozen:
            raise InvariantViolation(user_id, account.frozen_reason or "account is frozen")
        await self._check_invariants(account)
        return account

    async def _check_invariants(self, account: Account) -> None:
        if account.balance < 0:
            await self._freeze(account.id, f"negative balance {account.balance}")

    async def _freeze(self, user_id: str, reason: str) -> None:
        """Stop all further mutation of an account and raise."""
        logger.critical(f"Freezing account {user_id}: {reason}")
        try:
            await self.profiles.update(
                user_id, ledger_frozen=True, frozen_reason=reason[:255]
            )
        except StoreUnavailable as e:
            logger.critical(f"Could not persist freeze for account {user_id}: {e}")
        raise InvariantViolation(user_id, reason)

    async def _apply_delta(self, user_id: str, delta: int) -> tuple[int, int]:
        """Atomically move the balance by ``delta``.

        Returns:
            Tuple of (balance_before, balance_after)
        """
        for attempt in range(1, self.max_retries + 1):
            account = await self._load(user_id)
            before = account.balance
            after = before + delta

            if after < 0:
                raise InsufficientBalance(required=-delta, available=before)

            if await self.profiles.compare_and_set(
                user_id,
                expected={"balance": before, "ledger_frozen": False},
                changes={"balance": after},
            ):
                return before, after

            logger.debug(
                f"Balance of user {user_id} changed concurrently "
                f"(attempt {attempt}/{self.max_retries}), retrying"
            )

        raise StoreUnavailable(
            f"Balance of user {user_id} kept changing; "
            f"gave up after {self.max_retries} attempts"
        )

    async def _compensate(
        self,
        user_id: str,
        delta: int,
        cause: Optional[Exception] = None,
    ) -> None:
        """Undo a balance change whose paired record could not be written."""
        try:
            await self._apply_delta(user_id, delta)
        except TokenGateError as e:
            reason = f"failed to compensate {delta:+d} tokens: {e}"
            if cause is not None:
                reason = f"{reason} (after: {cause})"
            logger.critical(f"Account {user_id}: {reason}")
            await self._freeze(user_id, reason)


def get_token_ledger(db: AsyncSession) -> TokenLedger:
    """Factory function to create TokenLedger.

    Args:
        db: Database session

    Returns:
        Configured TokenLedger instance
    """
    return TokenLedger(db)
