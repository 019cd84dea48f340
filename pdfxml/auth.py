"""
Password hashing, JWT issuance and the request authentication dependency.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import HTTPException, Request
from passlib.context import CryptContext

from pdfxml import store
from pdfxml.config import Settings, get_settings
from pdfxml.db import UserRecord
from pdfxml.errors import AuthError

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "token"

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


def create_token(user: UserRecord, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    payload = {
        "id": user.id,
        "email": user.email,
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.jwt_expires_hours),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Optional[Settings] = None) -> dict:
    settings = settings or get_settings()
    try:
        claims = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.PyJWTError as exc:
        raise AuthError(str(exc)) from exc
    if not isinstance(claims.get("id"), str):
        raise AuthError("Token has no user id")
    return claims


def token_from_request(request: Request) -> Optional[str]:
    """Read the token from the ``token`` cookie or a Bearer Authorization header."""
    token = request.cookies.get(TOKEN_COOKIE)
    if token:
        return token
    scheme, _, credentials = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


async def get_current_user(request: Request) -> UserRecord:
    token = token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        claims = decode_token(token)
    except AuthError as exc:
        logger.info("Rejected token: %s", exc)
        raise HTTPException(status_code=401, detail="Invalid token")
    user = await store.get_user_by_id(claims["id"])
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user
