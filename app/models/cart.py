# app/models/cart.py
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.session import Base
from app.db.types import GUID
from app.domain.enums import RecoveryStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Cart(Base):
    __tablename__ = "carts"
    __table_args__ = (
        Index("ix_carts_store_status", "store_id", "recovery_status"),
        Index("ix_carts_store_shopify_cart", "store_id", "shopify_cart_id"),
        UniqueConstraint("store_id", "shopify_checkout_id", name="uq_carts_store_checkout"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4, nullable=False)
    store_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )

    customer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(40), nullable=True)

    # [{id, name, price, quantity, image?}] - value object, sin tabla propia
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    total: Mapped[float] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    recovery_status: Mapped[RecoveryStatus] = mapped_column(
        Enum(RecoveryStatus, name="recoverystatus"), default=RecoveryStatus.NONE, nullable=False
    )
    abandoned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    recovered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    discount_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    discount_amount: Mapped[float | None] = mapped_column(Numeric(12, 2), nullable=True)

    # Carrito Storefront (gid); lo reescribe el sync
    shopify_cart_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Checkout del Admin API del que se importo; clave de dedup del import
    shopify_checkout_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    store = relationship("Store", back_populates="carts")
