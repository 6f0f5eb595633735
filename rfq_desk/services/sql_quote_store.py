# rfq_desk/services/sql_quote_store.py
from __future__ import annotations

import asyncio
import posixpath
from typing import Any, Dict, List, Sequence

from sqlalchemy import asc, desc, select
from sqlalchemy.orm import Session, sessionmaker

from rfq_desk.core.errors import QuoteNotFoundError
from rfq_desk.core.quote_statuses import QuoteStatus
from rfq_desk.models.crm_order import CrmOrderRecord
from rfq_desk.models.quote import QuoteRecord
from rfq_desk.policies.quote_policies import enforce_permanent_delete_allowed
from rfq_desk.schemas.quotes import Quote, QuoteFilter
from rfq_desk.services.ports import OrderRequest, SortSpec

_SORT_COLUMNS = {
    "submitted_at": QuoteRecord.created_at,
    "modified_at": QuoteRecord.modified_at,
    "status": QuoteRecord.status,
}


def record_to_quote(row: QuoteRecord) -> Quote:
    order = row.order_details or {}
    return Quote.model_validate(
        {
            "id": row.id,
            "status": row.status,
            "lineItems": order.get("lineItems", []),
            "shippingCountry": order.get("shippingCountry"),
            "shippingPort": order.get("shippingPort"),
            "responseSummary": row.response_details,
            "negotiation": row.negotiation_details or {},
            "submittedAt": row.created_at,
            "modifiedAt": row.modified_at,
            "acceptedAt": row.accepted_at,
            "files": row.files or [],
            "clientId": row.user_id,
            "factoryId": row.factory_id,
            "isHidden": row.is_hidden,
            "modificationCount": row.modification_count,
        }
    )


def write_quote(row: QuoteRecord, quote: Quote) -> None:
    wire = quote.to_wire()
    row.status = quote.status.value
    row.order_details = {
        "lineItems": wire.get("lineItems", []),
        "shippingCountry": quote.shipping_country,
        "shippingPort": quote.shipping_port,
    }
    row.response_details = wire.get("responseSummary")
    row.negotiation_details = wire.get("negotiation", {})
    row.files = list(quote.files)
    row.user_id = quote.client_id
    row.factory_id = quote.factory_id
    row.is_hidden = quote.is_hidden
    row.modification_count = quote.modification_count
    row.created_at = quote.submitted_at
    row.modified_at = quote.modified_at
    row.accepted_at = quote.accepted_at


class SqlQuoteStore:
    """
    QuoteStore over SQLAlchemy. Each call uses its own session and runs
    in a worker thread so the event loop never blocks on the database.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # ─────────────────────────────────────────────
    # SYNC IMPLEMENTATION
    # ─────────────────────────────────────────────

    def _get_row(self, db: Session, quote_id: str) -> QuoteRecord:
        row = db.get(QuoteRecord, quote_id)
        if row is None:
            raise QuoteNotFoundError(quote_id)
        return row

    def list_sync(self, quote_filter: QuoteFilter, sort: SortSpec) -> List[Quote]:
        stmt = select(QuoteRecord)
        if quote_filter.status is not None:
            stmt = stmt.where(QuoteRecord.status == quote_filter.status.value)
        if not quote_filter.include_hidden:
            stmt = stmt.where(QuoteRecord.is_hidden.is_(False))
        if not quote_filter.include_trashed:
            stmt = stmt.where(QuoteRecord.status != QuoteStatus.TRASHED.value)
        if quote_filter.client_id is not None:
            stmt = stmt.where(QuoteRecord.user_id == quote_filter.client_id)

        column = _SORT_COLUMNS.get(sort.field, QuoteRecord.created_at)
        stmt = stmt.order_by(desc(column) if sort.descending else asc(column))

        with self.session_factory() as db:
            rows = db.execute(stmt).scalars().all()
            return [record_to_quote(r) for r in rows]

    def get_sync(self, quote_id: str) -> Quote:
        with self.session_factory() as db:
            return record_to_quote(self._get_row(db, quote_id))

    def create_sync(self, quote: Quote) -> Quote:
        with self.session_factory() as db:
            row = QuoteRecord(id=quote.id)
            write_quote(row, quote)
            db.add(row)
            db.commit()
            db.refresh(row)
            return record_to_quote(row)

    def patch_sync(self, quote_id: str, fields: Dict[str, Any]) -> Quote:
        with self.session_factory() as db:
            row = self._get_row(db, quote_id)
            merged = record_to_quote(row).to_wire()
            merged.update(fields)
            merged["id"] = quote_id  # immutable
            quote = Quote.model_validate(merged)
            write_quote(row, quote)
            db.commit()
            db.refresh(row)
            return record_to_quote(row)

    def delete_sync(self, quote_id: str) -> None:
        with self.session_factory() as db:
            row = self._get_row(db, quote_id)
            enforce_permanent_delete_allowed(row.id, row.status)
            db.delete(row)
            db.commit()

    def delete_many_sync(self, quote_ids: Sequence[str]) -> int:
        with self.session_factory() as db:
            rows = db.execute(
                select(QuoteRecord).where(
                    QuoteRecord.id.in_(list(quote_ids)),
                    QuoteRecord.status == QuoteStatus.TRASHED.value,
                )
            ).scalars().all()
            for row in rows:
                db.delete(row)
            db.commit()
            return len(rows)

    # ─────────────────────────────────────────────
    # QuoteStore
    # ─────────────────────────────────────────────

    async def list(self, quote_filter: QuoteFilter, sort: SortSpec) -> List[Quote]:
        return await asyncio.to_thread(self.list_sync, quote_filter, sort)

    async def get(self, quote_id: str) -> Quote:
        return await asyncio.to_thread(self.get_sync, quote_id)

    async def create(self, quote: Quote) -> Quote:
        return await asyncio.to_thread(self.create_sync, quote)

    async def patch(self, quote_id: str, fields: Dict[str, Any]) -> Quote:
        return await asyncio.to_thread(self.patch_sync, quote_id, fields)

    async def delete(self, quote_id: str) -> None:
        await asyncio.to_thread(self.delete_sync, quote_id)

    async def delete_many(self, quote_ids: Sequence[str]) -> int:
        return await asyncio.to_thread(self.delete_many_sync, quote_ids)


class SqlOrderSink:
    """OrderSink writing CRM orders; one order per quote."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create_order_sync(self, request: OrderRequest) -> str:
        with self.session_factory() as db:
            existing = db.execute(
                select(CrmOrderRecord).where(CrmOrderRecord.quote_id == request.quote_id)
            ).scalar_one_or_none()
            if existing is not None:
                return existing.id

            categories = [li.get("category") or "Item" for li in request.chosen_line_items]
            row = CrmOrderRecord(
                quote_id=request.quote_id,
                client_id=request.client_id,
                factory_id=request.source_factory_id,
                product_name=", ".join(dict.fromkeys(categories)) or "Order",
                status="Pending",
                destination_country=request.shipping_country,
                shipping_port=request.shipping_port,
                products=[
                    {
                        "id": str(li.get("lineItemId")),
                        "name": li.get("category") or "Item",
                        "quantity": li.get("qty"),
                        "agreedPrice": li.get("agreedPrice"),
                        "status": "Pending",
                    }
                    for li in request.chosen_line_items
                ],
                documents=[
                    {"name": posixpath.basename(p), "type": "Quote Attachment", "path": p}
                    for p in request.attachment_paths
                ],
                tasks=[],
            )
            db.add(row)
            db.commit()
            return row.id

    async def create_order(self, request: OrderRequest) -> str:
        return await asyncio.to_thread(self.create_order_sync, request)
