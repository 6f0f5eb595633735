from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from rfq_desk.schemas.primitives import WireModel
from rfq_desk.schemas.quotes import NegotiationEvent


class TimelineRow(WireModel):
    """A client ask paired with the factory reply that followed it."""

    client: Optional[NegotiationEvent] = None
    factory: Optional[NegotiationEvent] = None

    def is_empty(self) -> bool:
        return self.client is None and self.factory is None


class AgreedPrice(WireModel):
    line_item_id: int
    price: Optional[Decimal] = None
    source: str = Field(..., description="history | target | response")
    mutually_agreed: bool = False


class SignedLink(WireModel):
    name: str
    path: str
    url: Optional[str] = None
    error: Optional[str] = None


class BulkResult(WireModel):
    action: str
    succeeded: int = 0
    failed: int = 0
    succeeded_ids: List[str] = Field(default_factory=list)
    failed_ids: List[str] = Field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return self.failed == 0
