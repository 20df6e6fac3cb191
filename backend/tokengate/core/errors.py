"""Error taxonomy shared by the ledger, gate, lifecycle and reconciler.

Each error carries a ``retryable`` flag so that transport code can tell
user-actionable failures (buy tokens, upgrade) from transient ones (gateway
or store outage) without inspecting the concrete class.
"""

from typing import Optional


class TokenGateError(Exception):
    """Base exception for all entitlement and settlement errors."""

    retryable: bool = False


class AccountNotFound(TokenGateError):
    """Raised when no account record exists for a user."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Account not found: {user_id}")


class InsufficientBalance(TokenGateError):
    """Raised when an account doesn't have enough tokens for an operation."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient tokens: required {required}, available {available}"
        )

    @property
    def shortfall(self) -> int:
        return max(0, self.required - self.available)


class PremiumRequired(TokenGateError):
    """Raised when a premium feature is requested without an active subscription."""

    def __init__(self, feature_id: Optional[str] = None):
        self.feature_id = feature_id
        message = "Premium subscription required"
        if feature_id:
            message = f"{message} for feature {feature_id}"
        super().__init__(message)


class UnknownFeature(TokenGateError):
    """Raised when a feature id is not in the catalog."""

    def __init__(self, feature_id: str):
        self.feature_id = feature_id
        super().__init__(f"Feature not found: {feature_id}")


class InvalidItem(TokenGateError):
    """Raised when a purchase references an unknown plan or token package."""

    pass


class InvalidSignature(TokenGateError):
    """Raised when a payment notification signature does not match."""

    pass


class UnknownTransaction(TokenGateError):
    """Raised when a notification references an order id we never created."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Transaction not found: {order_id}")


class SettlementInProgress(TokenGateError):
    """Raised when another worker currently holds the settlement lease."""

    retryable = True

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Settlement already in progress for {order_id}")


class GatewayUnavailable(TokenGateError):
    """Raised when the payment gateway call fails or times out."""

    retryable = True


class StoreUnavailable(TokenGateError):
    """Raised when a persistent store call fails or times out."""

    retryable = True


class InvariantViolation(TokenGateError):
    """Raised when stored state breaks a ledger invariant.

    Fatal for the operation; the affected account is frozen and rejects
    further mutations until an operator clears it.
    """

    def __init__(self, user_id: str, detail: str):
        self.user_id = user_id
        self.detail = detail
        super().__init__(f"Invariant violation for account {user_id}: {detail}")


class ConstraintViolation(StoreUnavailable):
    """Raised when a write breaks a CHECK or foreign-key constraint.

    Unlike an outage, retrying the same write fails again.
    """

    retryable = False
