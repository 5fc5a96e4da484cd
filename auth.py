"""
Session and identity resolution.

Shoppers carry a signed token in the ``token`` cookie (or a Bearer header);
the admin panel carries one in ``adminToken``. Tokens minted by an external
identity provider share the signing secret and set ``provider`` to
something other than "credentials".
"""

import hmac
import logging
import os
from datetime import timedelta
from typing import Any, Dict, Optional

import bcrypt
import jwt
from fastapi import Request, Response
from pydantic import BaseModel

from database import utcnow
from errors import AuthError, ConfigurationError

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "token"
ADMIN_COOKIE = "adminToken"
ALGORITHM = "HS256"
SESSION_TTL = timedelta(days=7)
ADMIN_TTL = timedelta(hours=1)
CREDENTIALS_PROVIDER = "credentials"


class Identity(BaseModel):
    id: Optional[str] = None
    email: str
    name: Optional[str] = None
    image: Optional[str] = None
    provider: str = CREDENTIALS_PROVIDER

    @property
    def from_identity_provider(self) -> bool:
        return self.provider != CREDENTIALS_PROVIDER


def _secret() -> str:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise ConfigurationError("JWT_SECRET is not set")
    return secret


def issue_token(claims: Dict[str, Any], expires_in: timedelta = SESSION_TTL) -> str:
    payload = dict(claims)
    payload["exp"] = utcnow() + expires_in
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM)


def decode_token(token: Optional[str]) -> Optional[Dict[str, Any]]:
    if not token:
        return None
    try:
        return jwt.decode(token, _secret(), algorithms=[ALGORITHM])
    except jwt.PyJWTError as exc:
        logger.debug("Token verification failed: %s", exc)
        return None


def _request_token(request: Request) -> Optional[str]:
    token = request.cookies.get(TOKEN_COOKIE)
    if token:
        return token
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return None


def current_identity(request: Request) -> Optional[Identity]:
    claims = decode_token(_request_token(request))
    if not claims or not claims.get("email"):
        return None
    return Identity(
        id=claims.get("id"),
        email=str(claims["email"]).lower(),
        name=claims.get("name"),
        image=claims.get("image"),
        provider=claims.get("provider") or CREDENTIALS_PROVIDER,
    )


def require_identity(request: Request) -> Identity:
    identity = current_identity(request)
    if identity is None:
        raise AuthError()
    return identity


def require_admin(request: Request) -> Dict[str, Any]:
    claims = decode_token(request.cookies.get(ADMIN_COOKIE))
    if not claims or claims.get("role") != "admin":
        raise AuthError("Admin login required")
    return claims


def check_admin_credentials(email: Optional[str], password: Optional[str]) -> bool:
    admin_email = os.getenv("ADMIN_EMAIL")
    admin_password = os.getenv("ADMIN_PASSWORD")
    if not admin_email or not admin_password or email is None or password is None:
        return False
    email_ok = hmac.compare_digest(email.encode(), admin_email.encode())
    password_ok = hmac.compare_digest(password.encode(), admin_password.encode())
    return email_ok and password_ok


def session_claims(user: Dict[str, Any], provider: str = CREDENTIALS_PROVIDER) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "email": user["email"],
        "name": user.get("fullname"),
        "provider": provider,
    }


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=10)).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # placeholder passwords on identity-provider accounts are not hashes
        return False


def set_session_cookie(response: Response, name: str, token: str, ttl: timedelta) -> None:
    response.set_cookie(name, token, httponly=True, max_age=int(ttl.total_seconds()), samesite="lax")


def clear_session_cookie(response: Response, name: str) -> None:
    response.delete_cookie(name)
