"""Request authentication.

Outside production a client may identify itself with the ``X-Test-User-ID`` /
``X-Test-User-Email`` headers. Every other request needs a bearer token issued
by the upstream identity provider. When ``jwt_secret`` is configured (always
in production) the token signature is verified with it; otherwise only the
payload is decoded.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Sequence

import jwt
from fastapi import Depends, Request

from splitbook.core.config import Settings
from splitbook.core.errors import UnauthorizedError

logger = logging.getLogger("splitbook.auth")

TEST_USER_ID_HEADER = "x-test-user-id"
TEST_USER_EMAIL_HEADER = "x-test-user-email"
DEFAULT_ALGORITHMS = ("HS256",)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _user_id(value: object, message: str) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except ValueError as exc:
        raise UnauthorizedError(message) from exc


def decode_token(
    token: str,
    secret: Optional[str] = None,
    algorithms: Sequence[str] = DEFAULT_ALGORITHMS,
) -> CurrentUser:
    """Decode a bearer JWT and return the user it names.

    Unsigned (``alg: none``) and expired tokens are rejected, and ``sub`` must
    be a UUID. Raises UnauthorizedError for anything it cannot accept.
    """
    try:
        header = jwt.get_unverified_header(token)
        if header.get("alg") not in algorithms:
            raise UnauthorizedError("Invalid or expired token")
        if secret:
            payload = jwt.decode(
                token, secret, algorithms=list(algorithms), options={"require": ["sub"]}
            )
        else:
            payload = jwt.decode(
                token,
                algorithms=list(algorithms),
                options={"verify_signature": False, "verify_exp": True, "require": ["sub"]},
            )
    except jwt.ExpiredSignatureError as exc:
        raise UnauthorizedError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise UnauthorizedError("Invalid or expired token") from exc

    if not payload.get("sub"):
        raise UnauthorizedError("Invalid or expired token")
    user_id = _user_id(payload["sub"], "Invalid token subject - must be a valid UUID")
    return CurrentUser(id=user_id, email=str(payload.get("email") or ""))


def _test_user(request: Request, settings: Settings) -> Optional[CurrentUser]:
    if settings.is_production:
        return None
    test_user_id = request.headers.get(TEST_USER_ID_HEADER)
    if not test_user_id:
        return None
    user_id = _user_id(test_user_id, "Invalid test user ID format - must be a valid UUID")
    email = request.headers.get(TEST_USER_EMAIL_HEADER) or f"test-{user_id}@example.com"
    return CurrentUser(id=user_id, email=email)


def get_current_user(
    request: Request, settings: Settings = Depends(get_app_settings)
) -> CurrentUser:
    try:
        user = _test_user(request, settings)
        if user is not None:
            return user

        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            raise UnauthorizedError("Missing or invalid authorization header")
        token = auth_header[len("Bearer ") :].strip()
        return decode_token(token, settings.jwt_secret, settings.jwt_algorithms)
    except UnauthorizedError as exc:
        logger.warning(
            "authentication failed",
            extra={
                "context": {
                    "error": exc.message,
                    "method": request.method,
                    "path": request.url.path,
                }
            },
        )
        raise
