# app/schemas/auth.py
from pydantic import BaseModel, Field


class TokenPayload(BaseModel):
    sub: str | None = None
    exp: int | None = None
    iat: int | None = None
    jti: str | None = None
    type: str | None = None
    scopes: list[str] = Field(default_factory=list)


class IssuedToken(BaseModel):
    access_token: str
    token_type: str = Field(default="bearer")
    expires_in: int
