from __future__ import annotations

from fastapi import Request

from rfq_desk.core.config import Settings, get_settings
from rfq_desk.services.local_blob_store import LocalBlobStore
from rfq_desk.services.notifier import LoggingNotifier
from rfq_desk.services.order_handoff import OrderHandoff
from rfq_desk.services.quote_admin_service import QuoteAdminService
from rfq_desk.services.sql_quote_store import SqlOrderSink, SqlQuoteStore
from rfq_desk.services.sync_client import SyncClient


def build_admin_service(settings: Settings, session_factory, blobs: LocalBlobStore) -> QuoteAdminService:
    store = SqlQuoteStore(session_factory)
    notifier = LoggingNotifier()
    return QuoteAdminService(
        store=store,
        sync=SyncClient(store, blobs, settings=settings),
        notifier=notifier,
        handoff=OrderHandoff(SqlOrderSink(session_factory), notifier),
    )


def get_admin_service(request: Request) -> QuoteAdminService:
    service = getattr(request.app.state, "admin_service", None)
    if service is None:
        from rfq_desk.db.session import SessionLocal

        settings = get_settings()
        service = build_admin_service(settings, SessionLocal, get_blob_store(request))
        request.app.state.admin_service = service
    return service


def get_blob_store(request: Request) -> LocalBlobStore:
    blobs = getattr(request.app.state, "blob_store", None)
    if blobs is None:
        blobs = LocalBlobStore(get_settings())
        request.app.state.blob_store = blobs
    return blobs
