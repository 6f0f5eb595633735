# rfq_desk/services/order_handoff.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from rfq_desk.core.errors import DownstreamSideEffectError
from rfq_desk.schemas.quotes import Quote
from rfq_desk.services.line_item_ledger import LineItemLedger
from rfq_desk.services.ports import Notifier, OrderRequest, OrderSink, Severity

logger = logging.getLogger(__name__)


def build_order_request(quote: Quote) -> OrderRequest:
    ledger = LineItemLedger(quote)
    chosen: List[Dict[str, Any]] = []
    for item in quote.line_items:
        agreed = ledger.resolve_agreed_price(item.id)
        chosen.append(
            {
                "lineItemId": item.id,
                "category": item.category,
                "qty": item.qty,
                "fabricQuality": item.fabric_quality,
                "agreedPrice": str(agreed.price) if agreed.price is not None else None,
                "priceSource": agreed.source,
            }
        )

    attachments: List[str] = list(quote.files)
    for event in quote.negotiation.history:
        for path in event.attachments or []:
            if path not in attachments:
                attachments.append(path)

    return OrderRequest(
        quote_id=quote.id,
        client_id=quote.client_id,
        source_factory_id=quote.factory_id,
        chosen_line_items=chosen,
        attachment_paths=attachments,
        shipping_country=quote.shipping_country,
        shipping_port=quote.shipping_port,
    )


class OrderHandoff:
    """
    Creates the downstream order once a quote is accepted.
    A failure here never reverts the acceptance; it is reported as a warning.
    Repeated handoffs for one quote are absorbed by the OrderSink, which
    keeps one order per quote.
    """

    def __init__(self, sink: OrderSink, notifier: Notifier):
        self.sink = sink
        self.notifier = notifier

    async def on_accepted(self, quote: Quote) -> Optional[str]:
        request = build_order_request(quote)
        try:
            order_id = await self.sink.create_order(request)
        except Exception as exc:
            err = DownstreamSideEffectError(f"Order creation failed for quote {quote.id}: {exc}")
            logger.error(str(err), extra={"quote_id": quote.id})
            self.notifier.notify(
                "Quote accepted, but the order could not be created. Create it manually from the CRM.",
                Severity.WARNING,
            )
            return None

        logger.info("order created from quote", extra={"quote_id": quote.id, "order_id": order_id})
        return order_id
