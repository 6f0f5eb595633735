from __future__ import annotations

from typing import List, Optional

from pydantic import Field

from rfq_desk.core.quote_statuses import Party
from rfq_desk.schemas.primitives import Money, NonNegInt, WireModel
from rfq_desk.schemas.quotes import LineItemResponse, Sender


class FactoryResponsePayload(WireModel):
    """Admin reply on behalf of the factory."""

    price: Optional[Money] = None
    lead_time: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=4000)
    line_item_responses: List[LineItemResponse] = Field(default_factory=list)
    attachments: List[str] = Field(default_factory=list)


class DeclinePayload(WireModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class ApprovalTogglePayload(WireModel):
    line_item_id: int
    party: Party = Party.ADMIN
    confirmed: bool = False


class MessagePayload(WireModel):
    sender: Sender = Sender.FACTORY
    message: str = Field(..., min_length=1, max_length=4000)
    related_line_item_id: Optional[int] = None
    attachments: List[str] = Field(default_factory=list)


class SampleRequestPayload(WireModel):
    line_item_ids: List[int] = Field(default_factory=list)
    quantity: NonNegInt = 1
    shipping_address: Optional[str] = None
    notes: Optional[str] = None


class BulkSelectionPayload(WireModel):
    ids: List[str] = Field(default_factory=list)
