"""Unit tests for the entitlement gate.

Tests cover:
- Premium features with and without an active subscription
- Balance checks against feature cost
- Lookup by catalog id
- Raising variants of the check
"""

from datetime import timedelta

import pytest

from tokengate.core.catalog import get_feature
from tokengate.core.errors import InsufficientBalance, PremiumRequired, UnknownFeature
from tokengate.models.account import PremiumPlan
from tokengate.models.ledger_entry import LedgerEntryType
from tokengate.services.entitlement_gate import (
    DenialReason,
    EntitlementGate,
    get_entitlement_gate,
)
from tokengate.services.token_ledger import TokenLedger
from tokengate.utils.dates import utcnow

PREMIUM_FEATURE = "swot-self-analysis"  # premium, 2 tokens
FREE_FEATURE = "essay-idea-generator"  # not premium, 1 token


async def _premium_account(make_account, user_id="user-1", **fields):
    return await make_account(
        user_id,
        is_premium=True,
        premium_plan=PremiumPlan.MONTHLY,
        premium_expires_at=utcnow() + timedelta(days=5),
        **fields,
    )


class TestAuthorize:
    @pytest.mark.asyncio
    async def test_premium_feature_without_subscription(self, db_session, make_account):
        await make_account("user-1")
        await TokenLedger(db_session).add("user-1", 10, LedgerEntryType.BONUS)
        gate = get_entitlement_gate(db_session)

        decision = await gate.authorize("user-1", get_feature(PREMIUM_FEATURE))

        assert decision.allowed is False
        assert decision.reason == DenialReason.PREMIUM_REQUIRED
        assert decision.current is None
        assert decision.need_to_purchase == 0

    @pytest.mark.asyncio
    async def test_premium_feature_with_low_balance(self, db_session, make_account):
        await _premium_account(make_account)
        await TokenLedger(db_session).add("user-1", 1, LedgerEntryType.BONUS)
        gate = EntitlementGate(db_session)

        decision = await gate.authorize("user-1", get_feature(PREMIUM_FEATURE))

        assert decision.allowed is False
        assert decision.reason == DenialReason.INSUFFICIENT_TOKENS
        assert decision.required == 2
        assert decision.current == 1
        assert decision.need_to_purchase == 1

    @pytest.mark.asyncio
    async def test_premium_feature_allowed(self, db_session, make_account):
        await _premium_account(make_account)
        await TokenLedger(db_session).add("user-1", 2, LedgerEntryType.BONUS)
        gate = EntitlementGate(db_session)

        decision = await gate.authorize("user-1", get_feature(PREMIUM_FEATURE))

        assert decision.allowed is True
        assert decision.reason is None
        assert decision.current == 2

    @pytest.mark.asyncio
    async def test_expired_subscription_denied(self, db_session, make_account):
        await make_account(
            "user-1",
            is_premium=True,
            premium_plan=PremiumPlan.MONTHLY,
            premium_expires_at=utcnow() - timedelta(minutes=1),
        )
        gate = EntitlementGate(db_session)

        decision = await gate.authorize("user-1", get_feature(PREMIUM_FEATURE))

        assert decision.reason == DenialReason.PREMIUM_REQUIRED

    @pytest.mark.asyncio
    async def test_free_feature_needs_only_tokens(self, db_session, make_account):
        await make_account("user-1")
        gate = EntitlementGate(db_session)

        denied = await gate.authorize("user-1", get_feature(FREE_FEATURE))
        await TokenLedger(db_session).add("user-1", 1, LedgerEntryType.BONUS)
        allowed = await gate.authorize("user-1", get_feature(FREE_FEATURE))

        assert denied.reason == DenialReason.INSUFFICIENT_TOKENS
        assert denied.current == 0
        assert allowed.allowed is True

    @pytest.mark.asyncio
    async def test_gate_does_not_charge(self, db_session, make_account):
        await make_account("user-1")
        ledger = TokenLedger(db_session)
        await ledger.add("user-1", 3, LedgerEntryType.BONUS)
        gate = EntitlementGate(db_session, ledger=ledger)

        await gate.authorize("user-1", get_feature(FREE_FEATURE))

        assert await ledger.balance("user-1") == 3


class TestAuthorizeById:
    @pytest.mark.asyncio
    async def test_unknown_feature(self, db_session):
        gate = EntitlementGate(db_session)

        with pytest.raises(UnknownFeature):
            await gate.authorize_feature_id("user-1", "no-such-feature")

    @pytest.mark.asyncio
    async def test_known_feature(self, db_session, make_account):
        await make_account("user-1")
        gate = EntitlementGate(db_session)

        decision = await gate.authorize_feature_id("user-1", FREE_FEATURE)

        assert decision.feature_id == FREE_FEATURE
        assert decision.required == 1


class TestEnsureAuthorized:
    @pytest.mark.asyncio
    async def test_raises_premium_required(self, db_session, make_account):
        await make_account("user-1")
        gate = EntitlementGate(db_session)

        with pytest.raises(PremiumRequired):
            await gate.ensure_authorized("user-1", get_feature(PREMIUM_FEATURE))

    @pytest.mark.asyncio
    async def test_raises_insufficient_balance(self, db_session, make_account):
        await _premium_account(make_account)
        gate = EntitlementGate(db_session)

        with pytest.raises(InsufficientBalance) as exc_info:
            await gate.ensure_authorized("user-1", get_feature(PREMIUM_FEATURE))

        assert exc_info.value.shortfall == 2
