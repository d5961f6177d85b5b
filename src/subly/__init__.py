"""subly - yield-bearing staking and subscription-billing ledger."""

__version__ = "0.1.0"
