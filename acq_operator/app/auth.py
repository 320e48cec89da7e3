"""
Bearer JWT auth for dashboard endpoints (tokens issued by the hosted auth provider).
HS256 with AUTH_JWT_SECRET; audience AUTH_JWT_AUDIENCE; `sub` is the user id (UUID).
"""
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request
from jose import JWTError, jwt

from app.config import Settings, get_settings
from app.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Actor:
    """Authenticated dashboard user."""
    user_id: uuid.UUID
    email: Optional[str] = None


def extract_bearer_token(request: Request) -> Optional[str]:
    header = (request.headers.get("Authorization") or "").strip()
    parts = header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip() or None
    return None


def decode_access_token(token: str, settings: Settings) -> Optional[Actor]:
    """Verified Actor, or None for any invalid/expired/misconfigured token."""
    if not token or not settings.auth_jwt_secret:
        return None
    try:
        payload = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=["HS256"],
            audience=settings.auth_jwt_audience,
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError as e:
        logger.info("auth.token_rejected", error=str(e))
        return None
    try:
        user_id = uuid.UUID(str(payload.get("sub") or ""))
    except ValueError:
        logger.info("auth.invalid_subject")
        return None
    email = payload.get("email")
    return Actor(user_id=user_id, email=str(email) if email else None)


async def get_optional_actor(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> Optional[Actor]:
    """Actor or None; used where auth failures degrade instead of erroring."""
    token = extract_bearer_token(request)
    if token is None:
        return None
    return decode_access_token(token, settings)


async def require_actor(actor: Optional[Actor] = Depends(get_optional_actor)) -> Actor:
    """401 when the request carries no valid bearer token."""
    if actor is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return actor
