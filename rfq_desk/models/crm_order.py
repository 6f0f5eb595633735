#rfq_desk/models/crm_order.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from rfq_desk.db.base import Base
from rfq_desk.models.types import JsonDoc


class CrmOrderRecord(Base):
    """Production order created when a quote is accepted."""

    __tablename__ = "crm_orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))

    quote_id: Mapped[str] = mapped_column(String(64), nullable=False)
    client_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    factory_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    product_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Pending")
    destination_country: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    shipping_port: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    products: Mapped[List[Dict[str, Any]]] = mapped_column(JsonDoc, nullable=False, default=list)
    documents: Mapped[List[Dict[str, Any]]] = mapped_column(JsonDoc, nullable=False, default=list)
    tasks: Mapped[List[Dict[str, Any]]] = mapped_column(JsonDoc, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("quote_id", name="uq_crm_order_quote"),
    )
