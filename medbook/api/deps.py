from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional

from ..core.config import settings
from ..core.database import get_db, get_redis
from ..core.exceptions import AuthError, PermissionDeniedError, RateLimitError
from ..core.security import security, verify_token, UserRole, TokenPayload
from ..models.user import User
from ..stores.user_store import UserStore

async def get_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> str:
    """Read the bearer token from the Authorization header, else the auth cookie."""
    if credentials and credentials.credentials:
        return credentials.credentials

    token = request.cookies.get(settings.AUTH_COOKIE_NAME)
    if not token:
        raise AuthError("Access denied. No token provided.")
    return token

async def get_current_user_token(
    token: str = Depends(get_token)
) -> TokenPayload:
    """Verify signature and expiry of the caller's token."""
    token_payload = verify_token(token)
    if not token_payload:
        raise AuthError("Invalid or expired token.")

    # Check if token is access token
    if token_payload.token_type != "access":
        raise AuthError("Invalid token type.")

    return token_payload

async def get_current_user(
    request: Request,
    token_payload: TokenPayload = Depends(get_current_user_token),
    db: Session = Depends(get_db)
) -> User:
    """Resolve the token subject and attach the user to the request state."""
    try:
        user_id = int(token_payload.sub)
    except (TypeError, ValueError):
        raise AuthError("Invalid token payload.")

    user = UserStore(db).find_by_id(user_id)
    if not user:
        raise AuthError("User not found.")

    request.state.user = user
    return user

async def get_admin_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """Require admin role."""
    if current_user.role != UserRole.ADMIN:
        raise PermissionDeniedError("Admin access required.")
    return current_user

# Rate limiting dependency
async def rate_limit_check(
    request: Request,
    redis_client = Depends(get_redis)
) -> None:
    """Fixed-window rate limiting for authentication endpoints."""
    client_ip = request.client.host if request.client else "unknown"
    key = f"rate_limit:{request.url.path}:{client_ip}"

    current_requests = redis_client.get(key)
    if current_requests is None:
        redis_client.setex(key, settings.RATE_LIMIT_WINDOW_SECONDS, 1)
        return

    if int(current_requests) >= settings.RATE_LIMIT_REQUESTS:
        raise RateLimitError()
    redis_client.incr(key)
