import os
import uuid

from fastapi import Depends, HTTPException, Request
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_db
from .models import User

JWT_SECRET = os.environ.get("JWT_SECRET", "change-me-in-production")
JWT_ALGORITHM = "HS256"


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def _request_token(request: Request) -> str | None:
    # Browser sessions use the cookie; scripted uploads may send a bearer token.
    token = request.cookies.get("access_token")
    if token:
        return token
    scheme, _, credentials = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def _token_user_id(payload: dict) -> uuid.UUID:
    try:
        return uuid.UUID(str(payload.get("sub") or ""))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
    token = _request_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = await db.get(User, _token_user_id(decode_token(token)))
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")
    return user


def verify_csrf(request: Request):
    """Cookie-authenticated writes must echo the csrf_token cookie in X-CSRF-Token."""
    csrf_cookie = request.cookies.get("csrf_token")
    csrf_header = request.headers.get("x-csrf-token")
    if not csrf_cookie or not csrf_header or csrf_cookie != csrf_header:
        raise HTTPException(status_code=403, detail="CSRF token mismatch")
