# rfq_desk/api/v1/quotes.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile

from rfq_desk.core.deps import get_admin_service
from rfq_desk.core.errors import (
    InvalidTransitionError,
    PermissionDeniedError,
    QuoteNotFoundError,
    QuoteValidationError,
    RetryExhaustedError,
)
from rfq_desk.core.quote_statuses import QuoteStatus
from rfq_desk.schemas.actions import (
    ApprovalTogglePayload,
    BulkSelectionPayload,
    DeclinePayload,
    FactoryResponsePayload,
    MessagePayload,
    SampleRequestPayload,
)
from rfq_desk.services.quote_admin_service import (
    BULK_ACTIONS,
    MutationOutcome,
    QuoteAdminService,
)

router = APIRouter(prefix="/quotes")


# ---------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------


def _http_error(exc: BaseException) -> HTTPException:
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, QuoteNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, QuoteValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, RetryExhaustedError):
        return HTTPException(status_code=504, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc) or "Upstream store failure.")


def _outcome_response(outcome: MutationOutcome) -> dict:
    if not outcome.ok:
        raise _http_error(outcome.error or RuntimeError("Write failed."))

    body = {"ok": True}
    if outcome.quote is not None:
        body["quote"] = outcome.quote.to_wire()
    if outcome.order_id is not None:
        body["orderId"] = outcome.order_id
    return body


async def _run(coro) -> dict:
    try:
        outcome = await coro
    except (QuoteValidationError, InvalidTransitionError) as e:
        raise _http_error(e)
    return _outcome_response(outcome)


# ---------------------------------------------------------------------
# READS
# ---------------------------------------------------------------------


@router.get("")
async def list_quotes(
    status: Optional[QuoteStatus] = Query(default=None),
    include_hidden: bool = Query(default=False, alias="includeHidden"),
    service: QuoteAdminService = Depends(get_admin_service),
):
    try:
        await service.refresh()
    except Exception as e:
        # fall back to the last loaded view
        if not service.view.all():
            raise _http_error(e)
    return [q.to_wire() for q in service.queue(status, include_hidden)]


@router.get("/{quote_id}")
async def get_quote(
    quote_id: str,
    service: QuoteAdminService = Depends(get_admin_service),
):
    try:
        quote = await service.open_quote(quote_id)
    except Exception as e:
        raise _http_error(e)
    return quote.to_wire()


@router.get("/{quote_id}/timeline")
async def get_timeline(
    quote_id: str,
    line_item_id: Optional[int] = Query(default=None, alias="lineItemId"),
    service: QuoteAdminService = Depends(get_admin_service),
):
    try:
        rows = await service.timeline(quote_id, line_item_id)
    except Exception as e:
        raise _http_error(e)
    return [row.to_wire() for row in rows]


@router.get("/{quote_id}/agreed-prices")
async def get_agreed_prices(
    quote_id: str,
    service: QuoteAdminService = Depends(get_admin_service),
):
    try:
        prices = await service.agreed_prices(quote_id)
    except Exception as e:
        raise _http_error(e)
    return [p.to_wire() for p in prices]


@router.get("/{quote_id}/attachments")
async def get_attachment_links(
    quote_id: str,
    service: QuoteAdminService = Depends(get_admin_service),
):
    try:
        links = await service.attachment_links(quote_id)
    except Exception as e:
        raise _http_error(e)
    return [link.to_wire() for link in links]


# ---------------------------------------------------------------------
# BULK
# ---------------------------------------------------------------------


@router.post("/bulk/{action}")
async def post_bulk(
    action: str,
    payload: BulkSelectionPayload,
    service: QuoteAdminService = Depends(get_admin_service),
):
    if action not in BULK_ACTIONS:
        raise HTTPException(status_code=404, detail=f"Unknown bulk action {action!r}.")
    try:
        result = await service.bulk(action, payload.ids)
    except QuoteValidationError as e:
        raise _http_error(e)
    return result.to_wire()


# ---------------------------------------------------------------------
# WRITES
# ---------------------------------------------------------------------


@router.post("/{quote_id}/response")
async def post_response(
    quote_id: str,
    payload: FactoryResponsePayload,
    service: QuoteAdminService = Depends(get_admin_service),
):
    return await _run(service.respond(quote_id, payload))


@router.post("/{quote_id}/decline")
async def post_decline(
    quote_id: str,
    payload: DeclinePayload,
    service: QuoteAdminService = Depends(get_admin_service),
):
    return await _run(service.decline(quote_id, payload.reason))


@router.post("/{quote_id}/trash")
async def post_trash(
    quote_id: str,
    service: QuoteAdminService = Depends(get_admin_service),
):
    return await _run(service.trash(quote_id))


@router.post("/{quote_id}/restore")
async def post_restore(
    quote_id: str,
    service: QuoteAdminService = Depends(get_admin_service),
):
    return await _run(service.restore(quote_id))


@router.post("/{quote_id}/approvals")
async def post_approval_toggle(
    quote_id: str,
    payload: ApprovalTogglePayload,
    service: QuoteAdminService = Depends(get_admin_service),
):
    return await _run(
        service.toggle_approval(
            quote_id,
            payload.line_item_id,
            payload.party,
            confirmed=payload.confirmed,
        )
    )


@router.post("/{quote_id}/accept")
async def post_accept_all(
    quote_id: str,
    service: QuoteAdminService = Depends(get_admin_service),
):
    return await _run(service.accept_all(quote_id))


@router.post("/{quote_id}/messages")
async def post_message(
    quote_id: str,
    payload: MessagePayload,
    service: QuoteAdminService = Depends(get_admin_service),
):
    return await _run(service.post_message(quote_id, payload))


@router.post("/{quote_id}/line-items/{line_item_id}/uploads")
async def post_upload(
    quote_id: str,
    line_item_id: int,
    file: UploadFile = File(...),
    service: QuoteAdminService = Depends(get_admin_service),
):
    data = await file.read()
    try:
        stored = await service.upload_attachment(quote_id, line_item_id, file.filename or "", data)
    except Exception as e:
        raise _http_error(e)

    if stored is None:
        return {"status": "cancelled", "path": None}
    return {"status": "uploaded", "path": stored, "filename": file.filename}


@router.delete("/{quote_id}/line-items/{line_item_id}/uploads")
async def cancel_upload(
    quote_id: str,
    line_item_id: int,
    service: QuoteAdminService = Depends(get_admin_service),
):
    return {"cancelled": service.cancel_upload(quote_id, line_item_id)}


@router.post("/{quote_id}/sample-request")
async def post_sample_request(
    quote_id: str,
    payload: SampleRequestPayload,
    service: QuoteAdminService = Depends(get_admin_service),
):
    return await _run(service.request_sample(quote_id, payload))


@router.post("/{quote_id}/hide")
async def post_hide(
    quote_id: str,
    service: QuoteAdminService = Depends(get_admin_service),
):
    return await _run(service.set_hidden(quote_id, True))


@router.post("/{quote_id}/unhide")
async def post_unhide(
    quote_id: str,
    service: QuoteAdminService = Depends(get_admin_service),
):
    return await _run(service.set_hidden(quote_id, False))


@router.delete("/{quote_id}")
async def delete_quote(
    quote_id: str,
    service: QuoteAdminService = Depends(get_admin_service),
):
    return await _run(service.delete_permanently(quote_id))

