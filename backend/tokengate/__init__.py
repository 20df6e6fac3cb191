"""tokengate: token ledger, entitlement gate and payment settlement backend."""

__version__ = "0.1.0"
