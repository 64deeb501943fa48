# app/schemas/store.py
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ProductMappingCreate(BaseModel):
    product_id: UUID
    shopify_variant_id: str = Field(..., min_length=1, max_length=255)


class ProductMappingRead(BaseModel):
    id: UUID
    store_id: UUID
    product_id: UUID
    shopify_variant_id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class IntegrationStatus(BaseModel):
    store_id: UUID
    shopify_connected: bool
    shopify_store_url: str | None
    whatsapp_connected: bool
    products: int
    products_mapped: int


class IntegrationUpdate(BaseModel):
    """Credenciales a conectar; los campos omitidos no se tocan."""

    shopify_store_url: str | None = Field(None, min_length=1, max_length=255)
    shopify_access_token: str | None = Field(None, min_length=1, max_length=255)
    shopify_admin_access_token: str | None = Field(None, max_length=255)
    whatsapp_phone_number_id: str | None = Field(None, min_length=1, max_length=64)
    whatsapp_access_token: str | None = Field(None, min_length=1, max_length=512)
