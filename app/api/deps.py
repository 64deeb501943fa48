# app/api/deps.py
from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer, SecurityScopes
from jose import JWTError

from app.core.security import ADMIN_SCOPE, CRON_SCOPE, decode_access_token
from app.schemas.auth import TokenPayload
from app.services.recovery_engine import build_recovery_engine
from app.services.recovery_scan import EngineFactory


bearer_scheme = HTTPBearer(auto_error=False)


def _decode_token(token: str) -> TokenPayload:
    return TokenPayload(**decode_access_token(token))


async def get_current_principal(
    security_scopes: SecurityScopes,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> TokenPayload:
    cred_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": f'Bearer scope="{security_scopes.scope_str}"'},
    )

    if credentials is None or credentials.scheme.lower() != "bearer":
        raise cred_exc

    try:
        token_data = _decode_token(credentials.credentials)
    except JWTError:
        raise cred_exc

    if token_data.sub is None:
        raise cred_exc

    if security_scopes.scopes and ADMIN_SCOPE not in token_data.scopes:
        for scope in security_scopes.scopes:
            if scope not in token_data.scopes:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="Not enough permissions",
                    headers={"WWW-Authenticate": f'Bearer scope="{security_scopes.scope_str}"'},
                )
    return token_data


def require_admin(
    principal: TokenPayload = Security(get_current_principal, scopes=[ADMIN_SCOPE])
) -> TokenPayload:
    return principal


def require_cron(
    principal: TokenPayload = Security(get_current_principal, scopes=[CRON_SCOPE])
) -> TokenPayload:
    return principal


def get_engine_factory() -> EngineFactory:
    """Builds recovery engines; overridden in tests to inject fake clients."""
    return build_recovery_engine
