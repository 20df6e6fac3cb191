"""SQLAlchemy models for tokengate."""

from tokengate.models.account import Account, PremiumPlan
from tokengate.models.ledger_entry import LedgerEntry, LedgerEntryType
from tokengate.models.payment_transaction import (
    PaymentStatus,
    PaymentTransaction,
    PaymentType,
)
from tokengate.models.subscription_extension import SubscriptionExtension
from tokengate.models.usage_record import UsageRecord

__all__ = [
    "Account",
    "PremiumPlan",
    "LedgerEntry",
    "LedgerEntryType",
    "UsageRecord",
    "SubscriptionExtension",
    "PaymentTransaction",
    "PaymentType",
    "PaymentStatus",
]
