# rfq_desk/services/quote_ordering.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional

from rfq_desk.core.quote_statuses import QuoteStatus, parse_status, status_priority
from rfq_desk.schemas.quotes import Quote, QuoteFilter

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def relevant_timestamp(quote: Quote) -> datetime:
    """
    modified_at if present, else the timestamp that matches the status,
    else submitted_at.
    """
    if quote.modified_at is not None:
        return _aware(quote.modified_at)

    status = parse_status(quote.status)
    candidate: Optional[datetime] = None

    if status == QuoteStatus.ACCEPTED:
        candidate = quote.accepted_at
    elif status == QuoteStatus.IN_NEGOTIATION:
        candidate = quote.negotiation.submitted_at
        if candidate is None and quote.negotiation.history:
            candidate = max(e.timestamp for e in quote.negotiation.history)
    elif status in (QuoteStatus.RESPONDED, QuoteStatus.DECLINED):
        if quote.response_summary is not None:
            candidate = quote.response_summary.responded_at

    if candidate is not None:
        return _aware(candidate)
    if quote.submitted_at is not None:
        return _aware(quote.submitted_at)
    return _EPOCH


def queue_sort_key(quote: Quote):
    # priority ascending, then newest first
    return (status_priority(quote.status), -relevant_timestamp(quote).timestamp())


def sort_queue(quotes: Iterable[Quote]) -> List[Quote]:
    return sorted(quotes, key=queue_sort_key)


def filter_queue(quotes: Iterable[Quote], quote_filter: QuoteFilter) -> List[Quote]:
    return [q for q in quotes if quote_filter.matches(q)]


def _aware(value: datetime) -> datetime:
    # naive timestamps from older rows are treated as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
