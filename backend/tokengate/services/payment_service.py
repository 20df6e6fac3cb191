"""Payment reconciliation for Midtrans Snap purchases.

This service provides:
- Subscription plan and token package listing
- Payment creation (pending transaction + gateway session)
- Notification signature verification
- Exactly-once settlement of accepted payments into ledger credits and
  subscription extensions

Gateways retry notifications and may deliver them twice, concurrently or out
of order. A transaction settles inside a lease taken with a conditional update
on its row, its status is written only after the settlement side effect
succeeded, and every side effect is itself keyed by the order id, so a replay
after a crash between the two cannot credit twice.
"""

import logging
import secrets
import time
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.core.catalog import SUBSCRIPTION_PLANS, TOKEN_PACKAGES, get_package, get_plan
from tokengate.core.config import settings
from tokengate.core.errors import (
    AccountNotFound,
    InvalidItem,
    InvalidSignature,
    SettlementInProgress,
    TokenGateError,
    UnknownTransaction,
)
from tokengate.models.ledger_entry import LedgerEntryType
from tokengate.models.payment_transaction import PaymentStatus, PaymentTransaction, PaymentType
from tokengate.schemas.catalog import PlansResponse
from tokengate.schemas.payment import (
    CreatePaymentRequest,
    CreatePaymentResponse,
    NotificationResult,
    PaymentNotification,
)
from tokengate.services.midtrans_client import MidtransClient, verify_signature
from tokengate.services.stores import PaymentStore, ProfileStore
from tokengate.services.subscription_service import SubscriptionLifecycle
from tokengate.services.token_ledger import TokenLedger
from tokengate.utils.dates import utcnow

logger = logging.getLogger(__name__)

ORDER_PREFIXES = {
    PaymentType.SUBSCRIPTION: "SUB",
    PaymentType.TOKENS: "TOKEN",
}

# Gateway transaction_status values
SETTLED_STATUSES = frozenset({"capture", "settlement"})
FAILED_STATUSES = frozenset({"cancel", "deny", "expire"})


def generate_order_id(prefix: str = "ORDER") -> str:
    """Generate a unique order id, e.g. ``TOKEN-1718000000000-9F3A61C2``."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


def classify_notification(
    transaction_status: str,
    fraud_status: Optional[str] = None,
) -> PaymentStatus:
    """Map a gateway status to the state it moves a transaction to.

    Captured or settled payments complete unless fraud screening flagged
    them; cancelled, denied and expired payments fail; everything else
    (pending, authorize, challenged captures, unknown values) leaves the
    transaction pending.
    """
    status = (transaction_status or "").lower()
    if status in SETTLED_STATUSES:
        if not fraud_status or fraud_status.lower() == "accept":
            return PaymentStatus.COMPLETED
        return PaymentStatus.PENDING
    if status in FAILED_STATUSES:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


class PaymentReconciler:
    """Service for creating payments and settling gateway notifications."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: Optional[MidtransClient] = None,
        ledger: Optional[TokenLedger] = None,
        lifecycle: Optional[SubscriptionLifecycle] = None,
        payments: Optional[PaymentStore] = None,
        profiles: Optional[ProfileStore] = None,
        server_key: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the reconciler.

        Args:
            db: Database session backing the default stores and services
            gateway: Payment gateway client (defaults to MidtransClient())
            ledger: Token ledger used for credits
            lifecycle: Subscription lifecycle used for extensions
            payments: Payment transaction store
            profiles: Account store
            server_key: Secret used to verify notifications (defaults to settings)
            clock: Source of the current time
        """
        self.db = db
        self.gateway = gateway or MidtransClient()
        self.profiles = profiles or ProfileStore(db)
        self.payments = payments or PaymentStore(db)
        self.ledger = ledger or TokenLedger(db, profiles=self.profiles)
        self.lifecycle = lifecycle or SubscriptionLifecycle(
            db, profiles=self.profiles, clock=clock
        )
        self.server_key = server_key if server_key is not None else settings.MIDTRANS_SERVER_KEY
        self.clock = clock
        self.lease = timedelta(seconds=settings.SETTLEMENT_LEASE_SECONDS)

    @staticmethod
    def get_plans() -> PlansResponse:
        """Get all subscription plans and token packages."""
        return PlansResponse(
            subscriptions=list(SUBSCRIPTION_PLANS),
            tokens=list(TOKEN_PACKAGES),
        )

    @staticmethod
    def resolve_item(payment_type: PaymentType, item: str) -> tuple[str, int, Optional[int]]:
        """Look up what an item costs.

        Returns:
            Tuple of (display name, gross amount, tokens amount)

        Raises:
            InvalidItem: If the item is not in the catalog
        """
        if payment_type == PaymentType.SUBSCRIPTION:
            plan = get_plan(item)
            if plan is None:
                raise InvalidItem(
                    f"Invalid subscription plan: {item}. "
                    f"Valid plans: {', '.join(p.id.value for p in SUBSCRIPTION_PLANS)}"
                )
            return plan.name, plan.price, plan.bonus_tokens

        package = get_package(item)
        if package is None:
            raise InvalidItem(
                f"Invalid token package: {item}. "
                f"Valid packages: {', '.join(p.id for p in TOKEN_PACKAGES)}"
            )
        return package.name, package.price, package.tokens

    async def create_payment(
        self,
        user_id: str,
        request: CreatePaymentRequest,
    ) -> CreatePaymentResponse:
        """Open a pending transaction and a gateway session for a purchase.

        The price comes from the catalog, never from the client.

        Raises:
            InvalidItem: If the plan or package is unknown
            AccountNotFound: If the user has no account
            GatewayUnavailable: If the gateway call fails; the transaction
                stays pending and the caller may retry with a fresh order
        """
        name, gross_amount, tokens_amount = self.resolve_item(request.type, request.item)

        account = await self.profiles.get(user_id)
        if account is None:
            raise AccountNotFound(user_id)

        order_id = generate_order_id(ORDER_PREFIXES[request.type])
        await self.payments.create(
            PaymentTransaction(
                order_id=order_id,
                user_id=user_id,
                type=request.type,
                item=request.item,
                gross_amount=gross_amount,
                tokens_amount=tokens_amount,
                status=PaymentStatus.PENDING,
            )
        )
        logger.info(
            f"Created pending {request.type.value} payment {order_id} for user {user_id} "
            f"({request.item}, {gross_amount} IDR)"
        )

        session = await self.gateway.create_session(
            order_id=order_id,
            gross_amount=gross_amount,
            items=[
                {
                    "id": request.item,
                    "price": gross_amount,
                    "quantity": 1,
                    "name": name,
                }
            ],
            customer={
                "email": account.email,
                "first_name": account.full_name or "User",
            },
            callbacks={
                "finish": f"{settings.FRONTEND_URL}/payment/success",
                "error": f"{settings.FRONTEND_URL}/payment/error",
                "pending": f"{settings.FRONTEND_URL}/payment/pending",
            },
        )

        await self.payments.update(
            order_id, gateway_token=session.token, redirect_url=session.redirect_url
        )

        return CreatePaymentResponse(
            order_id=order_id,
            snap_token=session.token,
            redirect_url=session.redirect_url,
            gross_amount=gross_amount,
        )

    async def handle_notification(
        self,
        notification: PaymentNotification,
    ) -> NotificationResult:
        """Verify a gateway notification and apply it at most once.

        Raises:
            InvalidSignature: If the signature does not match
            UnknownTransaction: If the order id is not ours
            SettlementInProgress: If another worker is settling the same order
        """
        order_id = notification.order_id

        # 1. Authenticate
        if not verify_signature(
            order_id,
            notification.status_code,
            notification.gross_amount,
            notification.signature_key,
            self.server_key,
        ):
            logger.warning(
                f"Rejected notification for {order_id} with invalid signature "
                f"(status={notification.transaction_status}, "
                f"gross_amount={notification.gross_amount})"
            )
            raise InvalidSignature(f"Invalid signature for order {order_id}")

        # 2. Look up
        transaction = await self.payments.get(order_id)
        if transaction is None:
            logger.warning(f"Rejected notification for unknown order {order_id}")
            raise UnknownTransaction(order_id)

        # 3. Terminal transactions only re-report their status
        if transaction.status.is_terminal:
            return self._replay(transaction)

        # 4. Classify
        new_status = classify_notification(
            notification.transaction_status, notification.fraud_status
        )
        if new_status == PaymentStatus.PENDING:
            logger.info(
                f"Order {order_id} still pending "
                f"(transaction_status={notification.transaction_status}, "
                f"fraud_status={notification.fraud_status})"
            )
            return NotificationResult(order_id=order_id, status=PaymentStatus.PENDING)

        self._check_amount(transaction, notification)

        # 5 & 6. Settle inside the lease, then write the terminal status
        claim_token = str(uuid.uuid4())
        now = self.clock()
        if not await self.payments.claim(order_id, claim_token, now, now + self.lease):
            current = await self.payments.get(order_id)
            if current is not None and current.status.is_terminal:
                return self._replay(current)
            logger.warning(f"Order {order_id} is being settled by another worker")
            raise SettlementInProgress(order_id)

        try:
            if new_status == PaymentStatus.COMPLETED:
                await self._apply_settlement(transaction)
        except Exception:
            logger.exception(f"Settlement of order {order_id} failed; leaving it pending")
            await self._release(order_id, claim_token)
            raise

        completed_at = self.clock() if new_status == PaymentStatus.COMPLETED else None
        finalized = await self.payments.finalize(
            order_id,
            claim_token,
            new_status,
            completed_at=completed_at,
            gateway_status=notification.transaction_status,
        )
        if not finalized:
            # Our lease expired and another worker finished the order
            current = await self.payments.get(order_id)
            logger.warning(
                f"Lost settlement lease on order {order_id}; "
                f"stored status is {current.status.value if current else 'missing'}"
            )
            if current is not None:
                return self._replay(current)

        logger.info(f"Order {order_id} {new_status.value} ({notification.transaction_status})")
        return NotificationResult(
            order_id=order_id,
            status=new_status,
            applied=new_status == PaymentStatus.COMPLETED,
        )

    async def list_transactions(
        self, user_id: str, limit: int = 50
    ) -> list[PaymentTransaction]:
        """Most recent payment transactions of a user."""
        return await self.payments.list_for_user(user_id, limit=limit)

    async def _apply_settlement(self, transaction: PaymentTransaction) -> None:
        """Apply exactly one settlement side effect for a completed payment."""
        # A store rollback expires loaded rows, so read what we need up front
        order_id = transaction.order_id
        user_id = transaction.user_id
        item = transaction.item
        tokens_amount = transaction.tokens_amount

        if transaction.type == PaymentType.SUBSCRIPTION:
            plan = get_plan(item)
            if plan is None:
                raise InvalidItem(f"Invalid subscription plan: {item}")

            await self.lifecycle.extend(user_id, plan.id, order_id=order_id)
            if plan.bonus_tokens > 0:
                await self.ledger.add(
                    user_id,
                    plan.bonus_tokens,
                    LedgerEntryType.BONUS,
                    transaction_id=order_id,
                    description=f"Bonus tokens from {plan.name} subscription",
                )
            return

        package = get_package(item)
        if package is None:
            raise InvalidItem(f"Invalid token package: {item}")

        await self.ledger.add(
            user_id,
            tokens_amount or package.tokens,
            LedgerEntryType.PURCHASE,
            transaction_id=order_id,
            description=f"Purchased {package.name}",
        )

    async def _release(self, order_id: str, claim_token: str) -> None:
        try:
            await self.payments.release(order_id, claim_token)
        except TokenGateError as e:
            # The lease expires on its own
            logger.error(f"Could not release settlement lease on {order_id}: {e}")

    @staticmethod
    def _replay(transaction: PaymentTransaction) -> NotificationResult:
        logger.info(
            f"Order {transaction.order_id} already {transaction.status.value}; "
            f"ignoring notification"
        )
        return NotificationResult(
            order_id=transaction.order_id,
            status=transaction.status,
            message="Already processed",
        )

    @staticmethod
    def _check_amount(
        transaction: PaymentTransaction,
        notification: PaymentNotification,
    ) -> None:
        try:
            notified = float(notification.gross_amount)
        except ValueError:
            notified = None
        if notified is None or int(round(notified)) != transaction.gross_amount:
            logger.warning(
                f"Order {transaction.order_id} notified gross_amount "
                f"{notification.gross_amount}, expected {transaction.gross_amount}"
            )


def get_payment_reconciler(
    db: AsyncSession,
    gateway: Optional[MidtransClient] = None,
) -> PaymentReconciler:
    """Factory function to create PaymentReconciler instance.

    Args:
        db: Database session
        gateway: Optional gateway client

    Returns:
        Configured PaymentReconciler instance
    """
    return PaymentReconciler(db, gateway=gateway)
