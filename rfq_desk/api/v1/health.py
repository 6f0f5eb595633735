from fastapi import APIRouter, Depends, Request

from rfq_desk.core.config import get_settings
from rfq_desk.core.deps import get_admin_service
from rfq_desk.services.quote_admin_service import QuoteAdminService

router = APIRouter()


@router.get("/health")
async def health(
    request: Request,
    service: QuoteAdminService = Depends(get_admin_service),
):
    settings = get_settings()
    sync = service.sync
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "request_id": getattr(request.state, "request_id", None),
        "cached_quotes": len(service.view.all()),
        "generations": {
            "list": sync.list_gate.generation,
            "detail": sync.detail_gate.generation,
            "links": sync.link_gate.generation,
        },
    }
