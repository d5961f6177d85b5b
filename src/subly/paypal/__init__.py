"""PayPal integration for provider payouts."""

from subly.paypal.client import PayPalPayoutClient

__all__ = ["PayPalPayoutClient"]
