import uuid

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import require_admin
from app.db.session_async import commit, get_async_db
from app.schemas.store import IntegrationStatus, IntegrationUpdate, ProductMappingCreate, ProductMappingRead
from app.services import store_service

router = APIRouter(prefix="/stores", tags=["stores"], dependencies=[Depends(require_admin)])


@router.get("/{store_id}/integration", response_model=IntegrationStatus)
async def get_integration(store_id: uuid.UUID, db: AsyncSession = Depends(get_async_db)):
    return await store_service.get_integration_status(db, store_id)


@router.put("/{store_id}/integration", response_model=IntegrationStatus)
async def update_integration(
    store_id: uuid.UUID,
    payload: IntegrationUpdate,
    db: AsyncSession = Depends(get_async_db),
):
    integration = await store_service.update_integration(db, store_id, payload)
    await commit(db)
    return integration


@router.delete("/{store_id}/integration", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect_integration(store_id: uuid.UUID, db: AsyncSession = Depends(get_async_db)):
    await store_service.disconnect_integration(db, store_id)
    await commit(db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{store_id}/product-mappings", response_model=list[ProductMappingRead])
async def list_product_mappings(store_id: uuid.UUID, db: AsyncSession = Depends(get_async_db)):
    return await store_service.list_product_mappings(db, store_id)


@router.post(
    "/{store_id}/product-mappings",
    response_model=ProductMappingRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_product_mapping(
    store_id: uuid.UUID,
    payload: ProductMappingCreate,
    db: AsyncSession = Depends(get_async_db),
):
    mapping = await store_service.create_product_mapping(db, store_id, payload)
    await commit(db)
    return mapping


@router.delete("/{store_id}/product-mappings/{mapping_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product_mapping(
    store_id: uuid.UUID,
    mapping_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_db),
):
    await store_service.delete_product_mapping(db, store_id, mapping_id)
    await commit(db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
