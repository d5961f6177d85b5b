"""PayPal Payouts client - pays subscription providers for due items."""

from __future__ import annotations

import logging
import secrets
import time

import httpx

from subly.constants import MICRO_PER_CENT
from subly.models.config import PayPalConfig
from subly.models.records import DueItem, PayoutResult

log = logging.getLogger(__name__)

TOKEN_PATH = "/v1/oauth2/token"
PAYOUTS_PATH = "/v1/payments/payouts"
TOKEN_EXPIRY_MARGIN = 60  # seconds
DEFAULT_TOKEN_TTL = 3000  # seconds, when the response omits expires_in


def micro_to_cents(amount: int) -> int:
    """Round micro-USDC to the nearest cent."""
    return (amount + MICRO_PER_CENT // 2) // MICRO_PER_CENT


def format_cents(cents: int) -> str:
    return f"{cents // 100}.{cents % 100:02d}"


class PayPalPayoutClient:
    """Issues one PayPal payout batch per due subscription item.

    Without credentials every payout is skipped (reported as a successful,
    skipped result) so the billing loop can run against a sandbox ledger.
    """

    def __init__(self, config: PayPalConfig, http_client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._base_url = config.base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(config.timeout))
        self._owns_client = http_client is None
        self._token: str | None = None
        self._token_expiry = 0.0

        if not config.configured:
            log.warning("PayPal credentials not set; payouts will be skipped")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expiry:
            return self._token

        resp = await self._client.post(
            f"{self._base_url}{TOKEN_PATH}",
            auth=(self._config.client_id, self._config.client_secret),
            data={"grant_type": "client_credentials"},
        )
        resp.raise_for_status()
        body = resp.json()
        self._token = body["access_token"]
        expires_in = int(body.get("expires_in", DEFAULT_TOKEN_TTL))
        self._token_expiry = time.monotonic() + expires_in - TOKEN_EXPIRY_MARGIN
        log.debug("Obtained PayPal access token (expires in %ds)", expires_in)
        return self._token

    def build_payout(self, item: DueItem, batch_id: str) -> dict:
        return {
            "sender_batch_header": {
                "sender_batch_id": batch_id,
                "email_subject": "You have received a payout",
                "email_message": "Your Subly payout is on the way.",
            },
            "items": [
                {
                    "recipient_type": item.recipient_kind,
                    "amount": {
                        "value": format_cents(micro_to_cents(item.monthly_price)),
                        "currency": self._config.currency,
                    },
                    "note": f"Subly payout for {item.service_name}",
                    "sender_item_id": f"sub-{item.subscription_id}",
                    "receiver": item.receiver,
                }
            ],
        }

    async def send_payout(self, item: DueItem) -> PayoutResult:
        cents = micro_to_cents(item.monthly_price)
        if not self._config.configured:
            log.info(
                "Skipping PayPal payout for %s:%s (%s USD, credentials missing)",
                item.recipient_kind, item.receiver, format_cents(cents),
            )
            return PayoutResult(
                success=True,
                owner=item.owner,
                subscription_id=item.subscription_id,
                amount_cents=cents,
                skipped=True,
            )

        batch_id = f"subly-{int(time.time())}-{secrets.randbelow(1_000_000)}"
        try:
            token = await self._access_token()
            resp = await self._client.post(
                f"{self._base_url}{PAYOUTS_PATH}",
                headers={"Authorization": f"Bearer {token}"},
                json=self.build_payout(item, batch_id),
            )
            resp.raise_for_status()
            payout_batch_id = resp.json().get("batch_header", {}).get("payout_batch_id", batch_id)
        except httpx.HTTPStatusError as exc:
            error = f"PayPal HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            log.error("Payout for subscription %d failed: %s", item.subscription_id, error)
            return PayoutResult(
                success=False,
                owner=item.owner,
                subscription_id=item.subscription_id,
                amount_cents=cents,
                error=error,
            )
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            log.error("Payout for subscription %d failed: %s", item.subscription_id, exc)
            return PayoutResult(
                success=False,
                owner=item.owner,
                subscription_id=item.subscription_id,
                amount_cents=cents,
                error=str(exc),
            )

        log.info(
            "PayPal payout accepted for subscription %d (batch %s)",
            item.subscription_id, payout_batch_id,
        )
        return PayoutResult(
            success=True,
            owner=item.owner,
            subscription_id=item.subscription_id,
            amount_cents=cents,
            batch_id=payout_batch_id,
        )
