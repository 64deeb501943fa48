# app/schemas/cart.py
from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.domain.enums import RecoveryStatus


class CartItem(BaseModel):
    """Cart line as stored inside ``Cart.items``."""

    id: UUID
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., gt=0)
    image: str | None = None


class CartRead(BaseModel):
    id: UUID
    store_id: UUID
    customer_name: str | None
    customer_email: str | None
    customer_phone: str | None
    items: list[CartItem] = Field(default_factory=list)
    total: float
    recovery_status: RecoveryStatus
    abandoned_at: datetime | None
    last_notified_at: datetime | None
    recovered_at: datetime | None
    discount_code: str | None
    discount_amount: float | None
    shopify_cart_id: str | None
    shopify_checkout_id: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CartSyncRequest(BaseModel):
    store_id: UUID
    cart_id: UUID


class CartSyncResponse(BaseModel):
    success: bool = True
    shopify_cart_id: str
    outcome: Literal["updated", "created", "recreated"]
    # Productos sin mapping que no llegaron al carrito remoto
    dropped_items: list[str] = Field(default_factory=list)


class RecoveryMessageRequest(BaseModel):
    store_id: UUID
    cart_id: UUID | None = None


class CartActionResult(BaseModel):
    cart_id: UUID
    status: Literal["notified", "notified_final", "failed", "error"]


class StorePipelineResponse(BaseModel):
    abandoned: list[CartActionResult] = Field(default_factory=list)
    follow_up: list[CartActionResult] = Field(default_factory=list, serialization_alias="followUp")
    lost: int = 0
