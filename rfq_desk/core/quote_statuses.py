# rfq_desk/core/quote_statuses.py
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Set


class QuoteStatus(str, Enum):
    PENDING = "Pending"
    RESPONDED = "Responded"
    IN_NEGOTIATION = "In Negotiation"
    ADMIN_ACCEPTED = "Admin Accepted"
    CLIENT_ACCEPTED = "Client Accepted"
    ACCEPTED = "Accepted"
    DECLINED = "Declined"
    TRASHED = "Trashed"
    # buyer-side drafts; never produced by the engine
    DRAFT = "Draft"


class Party(str, Enum):
    ADMIN = "admin"
    CLIENT = "client"


TERMINAL_STATUSES: Set[QuoteStatus] = {
    QuoteStatus.ACCEPTED,
    QuoteStatus.DECLINED,
}

# Queue ranking, lower first. Anything missing ranks UNKNOWN_PRIORITY.
STATUS_PRIORITY: Dict[QuoteStatus, int] = {
    QuoteStatus.CLIENT_ACCEPTED: 0,
    QuoteStatus.PENDING: 1,
    QuoteStatus.IN_NEGOTIATION: 2,
    QuoteStatus.ADMIN_ACCEPTED: 3,
    QuoteStatus.RESPONDED: 4,
    QuoteStatus.ACCEPTED: 5,
    QuoteStatus.DECLINED: 6,
    QuoteStatus.TRASHED: 7,
}
UNKNOWN_PRIORITY = 8

# reachable from any open state through approval recomputation
_APPROVAL_OUTCOMES: Set[QuoteStatus] = {
    QuoteStatus.IN_NEGOTIATION,
    QuoteStatus.ADMIN_ACCEPTED,
    QuoteStatus.CLIENT_ACCEPTED,
    QuoteStatus.ACCEPTED,
}

ALLOWED_STATUS_TRANSITIONS: Dict[Optional[QuoteStatus], Set[QuoteStatus]] = {
    None: {QuoteStatus.PENDING},

    QuoteStatus.PENDING: _APPROVAL_OUTCOMES | {
        QuoteStatus.RESPONDED,
        QuoteStatus.DECLINED,
        QuoteStatus.TRASHED,
    },

    QuoteStatus.RESPONDED: _APPROVAL_OUTCOMES | {
        QuoteStatus.RESPONDED,
        QuoteStatus.DECLINED,
        QuoteStatus.TRASHED,
    },

    QuoteStatus.IN_NEGOTIATION: _APPROVAL_OUTCOMES | {
        QuoteStatus.DECLINED,
        QuoteStatus.TRASHED,
    },

    QuoteStatus.CLIENT_ACCEPTED: _APPROVAL_OUTCOMES | {
        QuoteStatus.DECLINED,
        QuoteStatus.TRASHED,
    },

    QuoteStatus.ADMIN_ACCEPTED: _APPROVAL_OUTCOMES | {
        QuoteStatus.TRASHED,
    },

    QuoteStatus.ACCEPTED: set(),
    QuoteStatus.DECLINED: set(),

    # restore goes back to whatever was archived
    QuoteStatus.TRASHED: {
        QuoteStatus.PENDING,
        QuoteStatus.RESPONDED,
        QuoteStatus.IN_NEGOTIATION,
        QuoteStatus.ADMIN_ACCEPTED,
        QuoteStatus.CLIENT_ACCEPTED,
        QuoteStatus.DRAFT,
    },

    QuoteStatus.DRAFT: {QuoteStatus.PENDING, QuoteStatus.TRASHED},
}


def parse_status(value) -> Optional[QuoteStatus]:
    if isinstance(value, QuoteStatus):
        return value
    try:
        return QuoteStatus(value)
    except ValueError:
        return None


def status_priority(value) -> int:
    status = parse_status(value)
    if status is None:
        return UNKNOWN_PRIORITY
    return STATUS_PRIORITY.get(status, UNKNOWN_PRIORITY)


def is_transition_allowed(current: Optional[QuoteStatus], nxt: QuoteStatus) -> bool:
    return nxt in ALLOWED_STATUS_TRANSITIONS.get(current, set())
