from pydantic import BaseModel

from app.schemas.cart import CartRead


class PaginatedCarts(BaseModel):
    total: int
    limit: int
    offset: int
    items: list[CartRead]
