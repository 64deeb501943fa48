"""cart recovery: stores, products, product mappings, carts

Revision ID: a3c9e7d21f04
Revises:
Create Date: 2026-10-19 10:00:00.000000
"""
from __future__ import annotations

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a3c9e7d21f04"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

RECOVERY_STATUSES = ("NONE", "ABANDONED", "NOTIFIED_FIRST", "NOTIFIED_FINAL", "RECOVERED", "LOST")


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    # ENUM robusto (evita "type already exists")
    recoverystatus = postgresql.ENUM(*RECOVERY_STATUSES, name="recoverystatus", create_type=False)
    recoverystatus.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "stores",
        _uuid_pk(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("shopify_store_url", sa.String(length=255), nullable=True),
        sa.Column("shopify_access_token", sa.String(length=255), nullable=True),
        sa.Column("shopify_admin_access_token", sa.String(length=255), nullable=True),
        sa.Column("whatsapp_phone_number_id", sa.String(length=64), nullable=True),
        sa.Column("whatsapp_access_token", sa.String(length=512), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "products",
        _uuid_pk(),
        sa.Column("store_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("images", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_products_store_id", "products", ["store_id"], unique=False)

    op.create_table(
        "product_mappings",
        _uuid_pk(),
        sa.Column("store_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("product_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("shopify_variant_id", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("store_id", "product_id", name="uq_product_mappings_store_product"),
        sa.UniqueConstraint("store_id", "shopify_variant_id", name="uq_product_mappings_store_variant"),
    )

    op.create_table(
        "carts",
        _uuid_pk(),
        sa.Column("store_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("customer_name", sa.String(length=200), nullable=True),
        sa.Column("customer_email", sa.String(length=320), nullable=True),
        sa.Column("customer_phone", sa.String(length=40), nullable=True),
        sa.Column("items", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("total", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "recovery_status",
            recoverystatus,
            nullable=False,
            server_default=sa.text("'NONE'::recoverystatus"),
        ),
        sa.Column("abandoned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("recovered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("discount_code", sa.String(length=64), nullable=True),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("shopify_cart_id", sa.String(length=255), nullable=True),
        sa.Column("shopify_checkout_id", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("store_id", "shopify_checkout_id", name="uq_carts_store_checkout"),
    )
    op.create_index("ix_carts_store_status", "carts", ["store_id", "recovery_status"], unique=False)
    op.create_index("ix_carts_store_shopify_cart", "carts", ["store_id", "shopify_cart_id"], unique=False)

    # (Opcional) limpiar defaults: los setea la app
    op.alter_column("carts", "recovery_status", server_default=None)
    op.alter_column("carts", "total", server_default=None)


def downgrade() -> None:
    op.drop_index("ix_carts_store_shopify_cart", table_name="carts")
    op.drop_index("ix_carts_store_status", table_name="carts")
    op.drop_table("carts")
    op.drop_table("product_mappings")
    op.drop_index("ix_products_store_id", table_name="products")
    op.drop_table("products")
    op.drop_table("stores")

    recoverystatus = postgresql.ENUM(*RECOVERY_STATUSES, name="recoverystatus", create_type=False)
    recoverystatus.drop(op.get_bind(), checkfirst=True)
