"""create quotes and crm orders tables

Revision ID: 4c2d8e1f9a07
Revises:
Create Date: 2026-10-18 10:12:41.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '4c2d8e1f9a07'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JsonDoc = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade():
    op.create_table(
        "quotes",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=True),
        sa.Column("factory_id", sa.String(128), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="Pending"),

        sa.Column("order_details", JsonDoc, nullable=False),
        sa.Column("response_details", JsonDoc, nullable=True),
        sa.Column("negotiation_details", JsonDoc, nullable=False),
        sa.Column("files", JsonDoc, nullable=False),

        sa.Column("is_hidden", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("modification_count", sa.Integer(), server_default="0", nullable=False),

        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_quotes_status", "quotes", ["status"])
    op.create_index("ix_quotes_user", "quotes", ["user_id"])

    op.create_table(
        "crm_orders",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("quote_id", sa.String(64), nullable=False),
        sa.Column("client_id", sa.String(128), nullable=True),
        sa.Column("factory_id", sa.String(128), nullable=True),

        sa.Column("product_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("status", sa.String(32), nullable=False, server_default="Pending"),
        sa.Column("destination_country", sa.String(128), nullable=True),
        sa.Column("shipping_port", sa.String(128), nullable=True),

        sa.Column("products", JsonDoc, nullable=False),
        sa.Column("documents", JsonDoc, nullable=False),
        sa.Column("tasks", JsonDoc, nullable=False),

        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("quote_id", name="uq_crm_order_quote"),
    )


def downgrade():
    op.drop_table("crm_orders")
    op.drop_index("ix_quotes_user", table_name="quotes")
    op.drop_index("ix_quotes_status", table_name="quotes")
    op.drop_table("quotes")
