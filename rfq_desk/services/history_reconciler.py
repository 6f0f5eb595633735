# rfq_desk/services/history_reconciler.py
"""
Turns the append-only negotiation log into display timelines.

Nothing here mutates the log; every function returns new lists.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional

from rfq_desk.schemas.quotes import (
    EventAction,
    LineItemPrice,
    NegotiationEvent,
    Quote,
    Sender,
)
from rfq_desk.schemas.results import TimelineRow


def chronological(events: Iterable[NegotiationEvent]) -> List[NegotiationEvent]:
    # stable: equal timestamps keep log order
    return sorted(events, key=lambda e: e.timestamp)


def events_for_line_item(
    events: Iterable[NegotiationEvent], line_item_id: int
) -> List[NegotiationEvent]:
    return [e for e in events if e.references(line_item_id)]


def group_timeline(events: Iterable[NegotiationEvent]) -> List[TimelineRow]:
    """
    Pair each client ask with the factory reply that follows it.

    A factory event with no pending client ask becomes a factory-only row.
    Rows come back newest first.
    """
    rows: List[TimelineRow] = []
    acc = TimelineRow()

    for event in chronological(events):
        if event.sender == Sender.CLIENT:
            # an open row is closed before a new ask; a second client
            # message in a row leaves the first one unanswered
            if not acc.is_empty():
                rows.append(acc)
            acc = TimelineRow(client=event)
        else:
            if acc.client is not None:
                rows.append(acc.model_copy(update={"factory": event}))
                acc = TimelineRow()
            else:
                rows.append(TimelineRow(factory=event))

    if not acc.is_empty():
        rows.append(acc)

    rows.reverse()
    return rows


def flatten_timeline(rows: Iterable[TimelineRow]) -> List[NegotiationEvent]:
    out: List[NegotiationEvent] = []
    for row in rows:
        if row.client is not None:
            out.append(row.client)
        if row.factory is not None:
            out.append(row.factory)
    return chronological(out)


def synthesize_history(quote: Quote) -> List[NegotiationEvent]:
    """
    Timeline for quotes that predate the structured log: a factory offer
    rebuilt from the response summary, then the client's legacy counter.
    """
    events: List[NegotiationEvent] = []
    summary = quote.response_summary
    neg = quote.negotiation

    if summary is not None:
        events.append(
            NegotiationEvent(
                id=f"legacy-response-{quote.id}",
                sender=Sender.FACTORY,
                message=summary.notes,
                price=summary.price,
                line_item_prices=[
                    LineItemPrice(line_item_id=r.line_item_id, price=r.price)
                    for r in summary.line_item_responses
                ]
                or None,
                timestamp=_first_time(summary.responded_at, quote.modified_at, quote.submitted_at),
                action=EventAction.OFFER,
            )
        )

    legacy_lines = neg.line_item_negotiations or []
    if neg.counter_price is not None or neg.message or legacy_lines:
        events.append(
            NegotiationEvent(
                id=f"legacy-counter-{quote.id}",
                sender=Sender.CLIENT,
                message=neg.message,
                price=neg.counter_price,
                line_item_prices=[
                    LineItemPrice(line_item_id=n.line_item_id, price=n.counter_price)
                    for n in legacy_lines
                ]
                or None,
                timestamp=_first_time(neg.submitted_at, quote.modified_at, quote.submitted_at),
                action=EventAction.COUNTER,
            )
        )

    return events


def effective_history(quote: Quote) -> List[NegotiationEvent]:
    if quote.negotiation.history:
        return list(quote.negotiation.history)
    return synthesize_history(quote)


def build_timeline(quote: Quote, line_item_id: Optional[int] = None) -> List[TimelineRow]:
    events = effective_history(quote)
    if line_item_id is not None:
        events = events_for_line_item(events, line_item_id)
    return group_timeline(events)


def _first_time(*candidates: Optional[datetime]) -> datetime:
    for c in candidates:
        if c is not None:
            return c
    raise ValueError("No timestamp available for synthetic history entry.")
