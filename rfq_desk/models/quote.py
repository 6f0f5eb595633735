#rfq_desk/models/quote.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from rfq_desk.db.base import Base
from rfq_desk.models.types import JsonDoc


def _new_id() -> str:
    return str(uuid.uuid4())


class QuoteRecord(Base):
    __tablename__ = "quotes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)

    user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    factory_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Pending")

    # lineItems, shippingCountry, shippingPort
    order_details: Mapped[Dict[str, Any]] = mapped_column(JsonDoc, nullable=False, default=dict)
    response_details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JsonDoc, nullable=True)
    negotiation_details: Mapped[Dict[str, Any]] = mapped_column(JsonDoc, nullable=False, default=dict)
    files: Mapped[List[str]] = mapped_column(JsonDoc, nullable=False, default=list)

    is_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    modification_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    modified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_quotes_status", "status"),
        Index("ix_quotes_user", "user_id"),
    )
