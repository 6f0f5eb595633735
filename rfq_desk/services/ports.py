# rfq_desk/services/ports.py
"""
Collaborators the negotiation engine talks to. Concrete adapters live in
sql_quote_store.py, local_blob_store.py and notifier.py; tests use fakes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence

from rfq_desk.schemas.quotes import Quote, QuoteFilter


class Severity(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class SortSpec:
    field: str = "submitted_at"
    descending: bool = True


@dataclass(frozen=True)
class OrderRequest:
    """Hand-off payload for the downstream order system."""

    quote_id: str
    client_id: Optional[str]
    source_factory_id: Optional[str]
    chosen_line_items: List[Dict[str, Any]] = field(default_factory=list)
    attachment_paths: List[str] = field(default_factory=list)
    shipping_country: Optional[str] = None
    shipping_port: Optional[str] = None


class QuoteStore(Protocol):
    async def list(self, quote_filter: QuoteFilter, sort: SortSpec) -> List[Quote]: ...

    async def get(self, quote_id: str) -> Quote: ...

    async def patch(self, quote_id: str, fields: Dict[str, Any]) -> Quote: ...

    async def delete(self, quote_id: str) -> None: ...

    async def delete_many(self, quote_ids: Sequence[str]) -> int: ...


class BlobStore(Protocol):
    async def create_signed_url(self, path: str, ttl_seconds: int) -> str: ...

    async def upload(self, path: str, data: bytes) -> str: ...

    async def remove(self, paths: Sequence[str]) -> None: ...


class OrderSink(Protocol):
    async def create_order(self, request: OrderRequest) -> str: ...


class Notifier(Protocol):
    def notify(self, message: str, severity: Severity = Severity.INFO) -> None: ...
