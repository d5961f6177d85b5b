"""DueScanner - batch, read-only search for payments coming due."""

from __future__ import annotations

import logging
from typing import Iterable

from subly.core.accrual import ensure_active
from subly.core.catalog import find_service
from subly.core.checked import add_ts
from subly.models.records import DueItem
from subly.models.state import (
    AccrualIndexState,
    ServiceCatalog,
    SubscriberLedger,
    SubscriptionStatus,
)

log = logging.getLogger(__name__)


class DueScanner:
    """Emits a DueItem for each active subscription needing payment.

    A subscription is due when its initial payment has not been recorded or
    its next billing time falls within `now + lookahead`. Ledgers without a
    configured payout target are skipped. Never mutates its inputs.
    """

    def find_due(
        self,
        state: AccrualIndexState,
        catalog: ServiceCatalog,
        ledgers: Iterable[SubscriberLedger],
        now: int,
        lookahead: int,
    ) -> list[DueItem]:
        ensure_active(state)
        upper_bound = add_ts(now, max(lookahead, 0))
        items: list[DueItem] = []

        for ledger in ledgers:
            target = ledger.payout_target
            if not target.configured or target.kind is None:
                log.debug("Skipping %s: no payout target", ledger.owner[:16])
                continue

            for sub in ledger.subscriptions:
                if sub.status is not SubscriptionStatus.ACTIVE:
                    continue
                if sub.initial_payment_recorded and sub.next_billing_time > upper_bound:
                    continue
                service = find_service(catalog, sub.service_id)
                items.append(
                    DueItem(
                        owner=ledger.owner,
                        subscription_id=sub.id,
                        service_id=service.id,
                        service_name=service.name,
                        monthly_price=sub.monthly_price,
                        recipient_kind=target.kind.value,
                        receiver=target.receiver,
                        due_ts=sub.next_billing_time,
                        initial_payment_recorded=sub.initial_payment_recorded,
                    )
                )

        log.debug("Due scan found %d item(s) up to %d", len(items), upper_bound)
        return items
