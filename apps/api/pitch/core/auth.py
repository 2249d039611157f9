from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from jose import JWTError, jwt
from sqlalchemy.orm import Session
from starlette.requests import Request

from pitch.context import get_correlation_id
from pitch.core.config import get_settings
from pitch.core.database import get_db
from pitch.platform.security.context import AuthContext
from pitch.platform.security.errors import TenantResolutionError
from pitch.platform.security.resolver import access_resolver


@dataclass
class AuthUser:
    sub: str | None


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        return AuthUser(sub=None)

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return AuthUser(sub=None)

    subject = payload.get("sub")
    return AuthUser(sub=str(subject) if subject else None)


def get_auth_context(
    request: Request,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AuthContext:
    if user.sub is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing or invalid bearer token")
    try:
        ctx = access_resolver.resolve(db, user.sub, correlation_id=get_correlation_id())
    except TenantResolutionError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))

    request.state.user_id = ctx.user_id
    request.state.tenant_id = str(ctx.tenant_id) if ctx.tenant_id else None
    return ctx
