# app/models/store.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.session import Base
from app.db.types import GUID


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Store(Base):
    __tablename__ = "stores"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # --- Shopify (Storefront token; Admin token is optional) ---
    shopify_store_url: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shopify_access_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shopify_admin_access_token: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # --- WhatsApp Cloud API ---
    whatsapp_phone_number_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    whatsapp_access_token: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    carts = relationship("Cart", back_populates="store", cascade="all, delete-orphan", passive_deletes=True)
    product_mappings = relationship(
        "ProductMapping", back_populates="store", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def shopify_configured(self) -> bool:
        return bool(self.shopify_store_url and self.shopify_access_token)

    @property
    def whatsapp_configured(self) -> bool:
        return bool(self.whatsapp_phone_number_id and self.whatsapp_access_token)
