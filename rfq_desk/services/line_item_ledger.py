# rfq_desk/services/line_item_ledger.py
from __future__ import annotations

from decimal import Decimal
from typing import FrozenSet, Iterable, Optional, Set

from rfq_desk.core.quote_statuses import Party
from rfq_desk.schemas.quotes import PRICING_ACTIONS, NegotiationEvent, Quote, Sender
from rfq_desk.schemas.results import AgreedPrice
from rfq_desk.services.history_reconciler import chronological


class LineItemLedger:
    """
    Read view over a quote's per-line-item approvals and offered prices.

    Approval sets are always clipped to the quote's current line items.
    Toggling returns a new set; the quote itself is never touched.
    """

    def __init__(self, quote: Quote):
        self.quote = quote
        self._line_item_ids: FrozenSet[int] = frozenset(quote.line_item_ids)

    # ─────────────────────────────────────────────
    # APPROVALS
    # ─────────────────────────────────────────────

    def approvals(self, party: Party) -> FrozenSet[int]:
        neg = self.quote.negotiation
        raw = (
            neg.admin_approved_line_items
            if party == Party.ADMIN
            else neg.client_approved_line_items
        )
        return self.pruned(raw)

    def pruned(self, ids: Iterable[int]) -> FrozenSet[int]:
        return frozenset(ids) & self._line_item_ids

    def is_approved(self, line_item_id: int, party: Party) -> bool:
        return line_item_id in self.approvals(party)

    def toggle_approval(self, line_item_id: int, party: Party) -> FrozenSet[int]:
        if line_item_id not in self._line_item_ids:
            raise KeyError(f"Line item {line_item_id} is not part of quote {self.quote.id}.")
        current: Set[int] = set(self.approvals(party))
        if line_item_id in current:
            current.discard(line_item_id)
        else:
            current.add(line_item_id)
        return frozenset(current)

    def all_approved(self, party: Party) -> bool:
        return self.approvals(party) >= self._line_item_ids

    def is_mutually_agreed(self, line_item_id: int) -> bool:
        return self.is_approved(line_item_id, Party.ADMIN) and self.is_approved(
            line_item_id, Party.CLIENT
        )

    # ─────────────────────────────────────────────
    # PRICES
    # ─────────────────────────────────────────────

    def last_pricing_event(self, line_item_id: int) -> Optional[NegotiationEvent]:
        for event in reversed(chronological(self.quote.negotiation.history)):
            if event.action not in PRICING_ACTIONS:
                continue
            if event.price_for(line_item_id) is not None:
                return event
        return None

    def latest_offer_price(self, line_item_id: int) -> Optional[Decimal]:
        event = self.last_pricing_event(line_item_id)
        if event is not None:
            return event.price_for(line_item_id)
        return self._response_price(line_item_id)

    def resolve_agreed_price(self, line_item_id: int) -> AgreedPrice:
        """
        Price the item settles at.

        When the client made the latest offer on the item, this resolves to
        the item's original target price rather than the client's counter.
        That mirrors what the marketplace has always shown; see DESIGN.md.
        """
        item = self.quote.line_item(line_item_id)
        if item is None:
            raise KeyError(f"Line item {line_item_id} is not part of quote {self.quote.id}.")

        agreed = self.is_mutually_agreed(line_item_id)
        event = self.last_pricing_event(line_item_id)

        if event is not None:
            if event.sender == Sender.CLIENT:
                return AgreedPrice(
                    line_item_id=line_item_id,
                    price=item.target_price,
                    source="target",
                    mutually_agreed=agreed,
                )
            return AgreedPrice(
                line_item_id=line_item_id,
                price=event.price_for(line_item_id),
                source="history",
                mutually_agreed=agreed,
            )

        response_price = self._response_price(line_item_id)
        if response_price is not None:
            return AgreedPrice(
                line_item_id=line_item_id,
                price=response_price,
                source="response",
                mutually_agreed=agreed,
            )

        return AgreedPrice(
            line_item_id=line_item_id,
            price=item.target_price,
            source="target",
            mutually_agreed=agreed,
        )

    def _response_price(self, line_item_id: int) -> Optional[Decimal]:
        summary = self.quote.response_summary
        if summary is None:
            return None
        entry = summary.response_for(line_item_id)
        return entry.price if entry is not None else None
