"""Tests for the record stores.

Tests cover:
- Lazy account creation
- Compare-and-set semantics
- Unique constraint, check constraint and timeout translation
- Subscription extension records
- Settlement lease claim, finalize and release
"""

import asyncio
from datetime import timedelta

import pytest

from tokengate.core.errors import ConstraintViolation, StoreUnavailable
from tokengate.models import LedgerEntry, SubscriptionExtension
from tokengate.models.account import PremiumPlan
from tokengate.models.ledger_entry import LedgerEntryType
from tokengate.models.payment_transaction import PaymentStatus, PaymentTransaction, PaymentType
from tokengate.services.stores import (
    DuplicateRecord,
    ExtensionStore,
    LedgerLogStore,
    PaymentStore,
    ProfileStore,
)
from tokengate.utils.dates import utcnow


class TestProfileStore:
    @pytest.mark.asyncio
    async def test_get_or_create(self, db_session):
        store = ProfileStore(db_session)

        created = await store.get_or_create("user-1", email="a@example.com")
        again = await store.get_or_create("user-1", email="other@example.com")

        assert created.balance == 0
        assert again.email == "a@example.com"

    @pytest.mark.asyncio
    async def test_compare_and_set(self, db_session, make_account):
        await make_account("user-1", balance=5)
        store = ProfileStore(db_session)

        assert await store.compare_and_set("user-1", {"balance": 5}, {"balance": 3}) is True
        assert await store.compare_and_set("user-1", {"balance": 5}, {"balance": 1}) is False
        assert (await store.get("user-1")).balance == 3

    @pytest.mark.asyncio
    async def test_compare_and_set_matches_null(self, db_session, make_account):
        await make_account("user-1")
        store = ProfileStore(db_session)

        assert await store.compare_and_set(
            "user-1", {"premium_order_id": None}, {"premium_order_id": "SUB-1"}
        )
        assert not await store.compare_and_set(
            "user-1", {"premium_order_id": None}, {"premium_order_id": "SUB-2"}
        )

    @pytest.mark.asyncio
    async def test_timeout_is_store_unavailable(self, db_session):
        store = ProfileStore(db_session, timeout=0.01)

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(StoreUnavailable):
            await store._run("profile.slow", slow())

    @pytest.mark.asyncio
    async def test_negative_balance_update_is_constraint_violation(self, db_session, make_account):
        await make_account("user-1", balance=2)
        store = ProfileStore(db_session)

        with pytest.raises(ConstraintViolation) as exc_info:
            await store.update("user-1", balance=-1)

        assert not isinstance(exc_info.value, DuplicateRecord)
        assert exc_info.value.retryable is False
        assert (await store.get("user-1")).balance == 2

    @pytest.mark.asyncio
    async def test_negative_balance_compare_and_set_is_constraint_violation(
        self, db_session, make_account
    ):
        await make_account("user-1", balance=2)
        store = ProfileStore(db_session)

        with pytest.raises(ConstraintViolation):
            await store.compare_and_set("user-1", {"balance": 2}, {"balance": -1})

        assert (await store.get("user-1")).balance == 2


class TestLedgerLogStore:
    @pytest.mark.asyncio
    async def test_duplicate_transaction_entry(self, db_session, make_account):
        await make_account("user-1")
        store = LedgerLogStore(db_session)

        def entry():
            return LedgerEntry(
                user_id="user-1",
                type=LedgerEntryType.PURCHASE,
                amount=5,
                balance_before=0,
                balance_after=5,
                transaction_id="TOKEN-1",
                description="x",
            )

        await store.append_entry(entry())
        with pytest.raises(DuplicateRecord):
            await store.append_entry(entry())

        found = await store.find_entry(LedgerEntryType.PURCHASE, transaction_id="TOKEN-1")
        assert found is not None
        assert await store.find_entry(LedgerEntryType.BONUS, transaction_id="TOKEN-1") is None

    @pytest.mark.asyncio
    async def test_find_entry_requires_key(self, db_session):
        with pytest.raises(ValueError):
            await LedgerLogStore(db_session).find_entry(LedgerEntryType.REFUND)


class TestPaymentLease:
    @pytest.mark.asyncio
    async def test_claim_finalize_release(self, db_session, make_account):
        await make_account("user-1")
        store = PaymentStore(db_session)
        await store.create(
            PaymentTransaction(
                order_id="TOKEN-1",
                user_id="user-1",
                type=PaymentType.TOKENS,
                item="small",
                gross_amount=7495,
                tokens_amount=5,
                status=PaymentStatus.PENDING,
            )
        )
        now = utcnow()
        lease = now + timedelta(seconds=60)

        assert await store.claim("TOKEN-1", "a", now, lease) is True
        assert await store.claim("TOKEN-1", "b", now, lease) is False
        assert await store.release("TOKEN-1", "b") is False
        assert await store.release("TOKEN-1", "a") is True

        assert await store.claim("TOKEN-1", "b", now, lease) is True
        assert await store.finalize("TOKEN-1", "a", PaymentStatus.COMPLETED) is False
        assert await store.finalize("TOKEN-1", "b", PaymentStatus.COMPLETED) is True

        stored = await store.get("TOKEN-1")
        assert stored.status == PaymentStatus.COMPLETED
        assert stored.claim_token is None
        assert await store.claim("TOKEN-1", "c", now, lease) is False


class TestExtensionStore:
    @pytest.mark.asyncio
    async def test_record_once_per_order(self, db_session, make_account):
        await make_account("user-1")
        store = ExtensionStore(db_session)
        expires_at = utcnow() + timedelta(days=30)

        def extension():
            return SubscriptionExtension(
                order_id="SUB-1",
                user_id="user-1",
                plan=PremiumPlan.MONTHLY,
                expires_at=expires_at,
            )

        assert await store.get("SUB-1") is None
        assert await store.record(extension()) is True
        assert await store.record(extension()) is False
        assert (await store.get("SUB-1")).plan == PremiumPlan.MONTHLY
