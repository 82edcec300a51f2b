"""
Auth utilities.

Resolves the caller's email from a bearer JWT (HS256, "email" claim) when
AUTH_JWT_SECRET is configured, falling back to the X-User-Email header set
by the trusted front end (and tests). Guide generation also accepts
anonymous callers, who are identified by network address instead.
"""
from fastapi import Header, HTTPException, Request
from typing import Optional
import jwt
import logging

from guidechat.core.config import settings
from guidechat.features.guests.service import client_identity


logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def verify_jwt(token: str) -> Optional[str]:
    """
    Verify a bearer token and extract the caller's email.

    Returns:
        email, or None when no secret is configured

    Raises:
        HTTPException 401: Invalid or expired token
    """
    if not settings.AUTH_JWT_SECRET:
        logger.debug("No AUTH_JWT_SECRET configured, skipping JWT validation")
        return None

    try:
        payload = jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    email = payload.get("email")
    if not email or not isinstance(email, str):
        raise HTTPException(status_code=401, detail="No 'email' claim in token")
    return normalize_email(email)


def get_optional_user_email(
    request: Request,
    x_user_email: Optional[str] = Header(None, description="Caller email set by the trusted front end"),
) -> Optional[str]:
    """
    Caller email, or None for anonymous requests.

    Priority:
    1. Bearer JWT from the Authorization header
    2. X-User-Email header
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        email = verify_jwt(auth_header[7:])
        if email:
            return email

    if x_user_email and x_user_email.strip():
        return normalize_email(x_user_email)
    return None


def get_current_user_email(
    request: Request,
    x_user_email: Optional[str] = Header(None, description="Caller email set by the trusted front end"),
) -> str:
    """
    Caller email for endpoints that require a signed-in user.

    Raises:
        HTTPException 401: Missing authentication
    """
    email = get_optional_user_email(request, x_user_email)
    if email:
        return email
    raise HTTPException(status_code=401, detail="Authentication required")


def get_client_identity(request: Request) -> str:
    """Guest identity from proxy headers or the socket peer."""
    peer = request.client.host if request.client else None
    return client_identity(request.headers, peer)
