"""Subscription lifecycle: premium status derived from the stored expiry.

There is no background job that ends subscriptions. An expired subscription
is deactivated the first time its status is resolved after the expiry.

Extensions paid by an order are recorded in ``subscription_extensions``
(unique per order), so a retried settlement never extends twice. The account
row also remembers the last applied order in ``premium_order_id``; before a
new order overwrites it, the previous order's extension row is written if it
is missing, which covers a crash between the expiry write and the record.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.core.catalog import get_plan
from tokengate.core.config import settings
from tokengate.core.errors import AccountNotFound, InvalidItem, InvariantViolation, StoreUnavailable
from tokengate.models.account import Account, PremiumPlan
from tokengate.models.subscription_extension import SubscriptionExtension
from tokengate.services.stores import ExtensionStore, ProfileStore
from tokengate.utils.dates import add_months, days_until, ensure_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionStatus:
    """Resolved premium status at a point in time."""

    active: bool
    plan: Optional[PremiumPlan] = None
    expires_at: Optional[datetime] = None
    days_remaining: int = 0


class SubscriptionLifecycle:
    """Service for resolving and extending premium subscriptions."""

    def __init__(
        self,
        db: AsyncSession,
        profiles: Optional[ProfileStore] = None,
        clock: Callable[[], datetime] = utcnow,
        max_retries: Optional[int] = None,
        extensions: Optional[ExtensionStore] = None,
    ):
        self.db = db
        self.profiles = profiles or ProfileStore(db)
        self.extensions = extensions or ExtensionStore(db)
        self.clock = clock
        self.max_retries = max_retries or settings.LEDGER_MAX_RETRIES

    async def resolve_status(self, user_id: str) -> SubscriptionStatus:
        """Get the current premium status, deactivating it if it has expired.

        Args:
            user_id: The user's ID

        Returns:
            SubscriptionStatus (inactive for unknown users)

        Raises:
            InvariantViolation: If the account is premium without an expiry
        """
        for _ in range(self.max_retries):
            account = await self.profiles.get(user_id)
            if account is None:
                return SubscriptionStatus(active=False)

            status = self._evaluate(account)
            if status is not None:
                return status

            # Stored flag says premium but the expiry has passed
            expired_at = account.premium_expires_at
            cleared = await self.profiles.compare_and_set(
                user_id,
                expected={
                    "is_premium": True,
                    "premium_expires_at": expired_at,
                },
                changes={"is_premium": False, "premium_plan": None},
            )
            if cleared:
                logger.info(
                    f"Premium subscription of user {user_id} expired at "
                    f"{expired_at}; deactivated"
                )
                return SubscriptionStatus(active=False, expires_at=ensure_utc(expired_at))
            # Extended or cleared concurrently; evaluate the fresh row

        raise StoreUnavailable(f"Subscription of user {user_id} kept changing")

    async def extend(
        self,
        user_id: str,
        plan: PremiumPlan,
        duration: Optional[timedelta] = None,
        order_id: Optional[str] = None,
    ) -> SubscriptionStatus:
        """Activate or renew a subscription.

        The new expiry is ``max(now, current expiry) + duration`` so that a
        renewal before expiry keeps the remaining paid time.

        Args:
            user_id: The user's ID
            plan: Plan being paid for
            duration: Length to add (defaults to the plan's calendar period)
            order_id: Payment order settling this extension; any later call
                with the same order id is a no-op

        Returns:
            SubscriptionStatus after the extension

        Raises:
            AccountNotFound: If the user has no account
            InvalidItem: If the plan is not in the catalog
            InvariantViolation: If the account is frozen
        """
        plan_config = get_plan(plan.value)
        if plan_config is None:
            raise InvalidItem(f"Invalid subscription plan: {plan}")

        if order_id is not None and await self.extensions.get(order_id) is not None:
            logger.info(f"Subscription order {order_id} already applied to user {user_id}")
            return await self._current(user_id)

        for attempt in range(1, self.max_retries + 1):
            account = await self.profiles.get(user_id)
            if account is None:
                raise AccountNotFound(user_id)
            if account.ledger_frozen:
                raise InvariantViolation(user_id, account.frozen_reason or "account is frozen")

            stored_expiry = account.premium_expires_at
            last_order_id = account.premium_order_id
            current_expiry = ensure_utc(stored_expiry)

            if order_id is not None and last_order_id == order_id:
                # Expiry was written but the extension row was not
                await self._record(order_id, user_id, account.premium_plan or plan, current_expiry)
                return await self._current(user_id)

            if order_id is not None and last_order_id is not None:
                # Keep the previous order replay-safe before overwriting it
                await self._record(
                    last_order_id, user_id, account.premium_plan or plan, current_expiry
                )

            now = self.clock()
            base = max(now, current_expiry) if current_expiry else now
            if duration is not None:
                new_expiry = base + duration
            else:
                new_expiry = add_months(base, plan_config.period_months)

            changes = {
                "is_premium": True,
                "premium_plan": plan,
                "premium_expires_at": new_expiry,
            }
            if order_id is not None:
                changes["premium_order_id"] = order_id

            if await self.profiles.compare_and_set(
                user_id,
                expected={
                    "premium_expires_at": stored_expiry,
                    "premium_order_id": last_order_id,
                    "ledger_frozen": False,
                },
                changes=changes,
            ):
                logger.info(
                    f"Extended {plan.value} subscription of user {user_id} "
                    f"to {new_expiry.isoformat()}"
                )
                if order_id is not None:
                    await self._record(order_id, user_id, plan, new_expiry)
                return self._status(True, plan, new_expiry)

            logger.debug(
                f"Subscription of user {user_id} changed concurrently "
                f"(attempt {attempt}/{self.max_retries}), retrying"
            )

        raise StoreUnavailable(f"Subscription of user {user_id} kept changing")

    async def _record(
        self,
        order_id: str,
        user_id: str,
        plan: PremiumPlan,
        expires_at: Optional[datetime],
    ) -> None:
        if await self.extensions.get(order_id) is not None:
            return
        await self.extensions.record(
            SubscriptionExtension(
                order_id=order_id,
                user_id=user_id,
                plan=plan,
                expires_at=expires_at or self.clock(),
            )
        )

    async def _current(self, user_id: str) -> SubscriptionStatus:
        """Status of the stored row without deactivating anything."""
        account = await self.profiles.get(user_id)
        if account is None:
            raise AccountNotFound(user_id)
        expires_at = ensure_utc(account.premium_expires_at)
        active = bool(account.is_premium and expires_at and expires_at > self.clock())
        return self._status(active, account.premium_plan if active else None, expires_at)

    def _status(
        self,
        active: bool,
        plan: Optional[PremiumPlan],
        expires_at: Optional[datetime],
    ) -> SubscriptionStatus:
        return SubscriptionStatus(
            active=active,
            plan=plan,
            expires_at=expires_at,
            days_remaining=days_until(expires_at, now=self.clock()) if active else 0,
        )

    def _evaluate(self, account: Account) -> Optional[SubscriptionStatus]:
        """Status from a stored row, or None if it needs lazy deactivation."""
        expires_at = ensure_utc(account.premium_expires_at)
        if not account.is_premium:
            return SubscriptionStatus(active=False, expires_at=expires_at)

        if expires_at is None:
            logger.critical(f"Account {account.id} is premium without an expiry")
            raise InvariantViolation(account.id, "premium account has no expiry")

        if expires_at > self.clock():
            return self._status(True, account.premium_plan, expires_at)
        return None


def get_subscription_lifecycle(db: AsyncSession) -> SubscriptionLifecycle:
    """Factory function to create SubscriptionLifecycle."""
    return SubscriptionLifecycle(db)
