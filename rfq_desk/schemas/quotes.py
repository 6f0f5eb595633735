# rfq_desk/schemas/quotes.py
from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import ConfigDict, Field, field_validator

from rfq_desk.core.quote_statuses import QuoteStatus
from rfq_desk.schemas.primitives import Money, NonNegInt, WireModel


class Sender(str, Enum):
    CLIENT = "client"
    FACTORY = "factory"


class EventAction(str, Enum):
    OFFER = "offer"
    COUNTER = "counter"
    INFO = "info"
    ACCEPT = "accept"
    DECLINE = "decline"


PRICING_ACTIONS = {EventAction.OFFER, EventAction.COUNTER}


def new_event_id() -> str:
    return uuid.uuid4().hex


class LineItem(WireModel):
    """
    One product line inside a quote.
    Unknown fields (size ratios, trims, ...) are kept as-is.
    """

    model_config = ConfigDict(extra="allow")

    id: int
    category: str = ""
    qty: NonNegInt = 0
    target_price: Optional[Money] = None
    fabric_quality: Optional[str] = None
    weight_gsm: Optional[str] = None
    style_option: Optional[str] = None
    packaging_reqs: Optional[str] = None
    labeling_reqs: Optional[str] = None
    size_range: List[str] = Field(default_factory=list)
    special_instructions: Optional[str] = None
    quantity_type: Optional[str] = None
    container_type: Optional[str] = None

    @field_validator("target_price", mode="before")
    @classmethod
    def _blank_price_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class LineItemPrice(WireModel):
    line_item_id: int
    price: Money


class LineItemResponse(WireModel):
    line_item_id: int
    price: Money
    notes: Optional[str] = None


class ResponseSummary(WireModel):
    """Latest consolidated factory offer."""

    price: Optional[Money] = None
    lead_time: Optional[str] = None
    notes: Optional[str] = None
    line_item_responses: List[LineItemResponse] = Field(default_factory=list)
    responded_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None

    @field_validator("line_item_responses")
    @classmethod
    def _one_entry_per_line_item(cls, v: List[LineItemResponse]) -> List[LineItemResponse]:
        # last write per id wins
        by_id: Dict[int, LineItemResponse] = {}
        for entry in v:
            by_id[entry.line_item_id] = entry
        return list(by_id.values())

    def response_for(self, line_item_id: int) -> Optional[LineItemResponse]:
        for entry in self.line_item_responses:
            if entry.line_item_id == line_item_id:
                return entry
        return None


class NegotiationEvent(WireModel):
    """Append-only history entry. Frozen once built."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_event_id)
    sender: Sender
    message: Optional[str] = None
    price: Optional[Money] = None
    line_item_prices: Optional[List[LineItemPrice]] = None
    related_line_item_id: Optional[int] = None
    timestamp: datetime
    action: Optional[EventAction] = None
    attachments: Optional[List[str]] = None

    def price_for(self, line_item_id: int):
        for entry in self.line_item_prices or []:
            if entry.line_item_id == line_item_id:
                return entry.price
        return None

    def references(self, line_item_id: int) -> bool:
        if self.related_line_item_id == line_item_id:
            return True
        return any(p.line_item_id == line_item_id for p in self.line_item_prices or [])


class LegacyLineItemNegotiation(WireModel):
    line_item_id: int
    counter_price: Money
    notes: Optional[str] = None


class SampleRequest(WireModel):
    line_item_ids: List[int] = Field(default_factory=list)
    quantity: NonNegInt = 1
    shipping_address: Optional[str] = None
    notes: Optional[str] = None
    requested_at: datetime
    status: str = "requested"


class Negotiation(WireModel):
    history: List[NegotiationEvent] = Field(default_factory=list)
    admin_approved_line_items: Set[int] = Field(default_factory=set)
    client_approved_line_items: Set[int] = Field(default_factory=set)
    previous_status: Optional[QuoteStatus] = None
    sample_request: Optional[SampleRequest] = None

    # pre-history fields, read only by the timeline fallback
    counter_price: Optional[Money] = None
    message: Optional[str] = None
    submitted_at: Optional[datetime] = None
    line_item_negotiations: Optional[List[LegacyLineItemNegotiation]] = None


class Quote(WireModel):
    id: str
    status: QuoteStatus = QuoteStatus.PENDING
    line_items: List[LineItem] = Field(default_factory=list)
    response_summary: Optional[ResponseSummary] = None
    negotiation: Negotiation = Field(default_factory=Negotiation)

    submitted_at: datetime
    modified_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None

    files: List[str] = Field(default_factory=list)

    client_id: Optional[str] = None
    factory_id: Optional[str] = None
    shipping_country: Optional[str] = None
    shipping_port: Optional[str] = None
    is_hidden: bool = False
    modification_count: NonNegInt = 0

    @property
    def line_item_ids(self) -> Set[int]:
        return {item.id for item in self.line_items}

    def line_item(self, line_item_id: int) -> Optional[LineItem]:
        for item in self.line_items:
            if item.id == line_item_id:
                return item
        return None


class QuoteFilter(WireModel):
    """List filter understood by every QuoteStore."""

    status: Optional[QuoteStatus] = None
    include_hidden: bool = False
    include_trashed: bool = True
    client_id: Optional[str] = None

    def matches(self, quote: Quote) -> bool:
        if self.status is not None and quote.status != self.status:
            return False
        if not self.include_hidden and quote.is_hidden:
            return False
        if not self.include_trashed and quote.status == QuoteStatus.TRASHED:
            return False
        if self.client_id is not None and quote.client_id != self.client_id:
            return False
        return True
