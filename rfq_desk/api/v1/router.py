from fastapi import APIRouter

from rfq_desk.api.v1.health import router as health_router
from rfq_desk.api.v1.quotes import router as quotes_router
from rfq_desk.api.v1.attachments import router as attachments_router


v1_router = APIRouter()

# ------------------------------------------------------------------
# SYSTEM / CORE
# ------------------------------------------------------------------
v1_router.include_router(health_router, tags=["health"])

# ------------------------------------------------------------------
# NEGOTIATION
# ------------------------------------------------------------------
v1_router.include_router(quotes_router, tags=["quotes"])
v1_router.include_router(attachments_router, tags=["attachments"])
