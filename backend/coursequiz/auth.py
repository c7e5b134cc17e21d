"""
Bearer token authentication.

Tokens are issued by the marketplace's auth service and carry the user id
in `sub` plus a list of `roles`. This module only verifies them and turns
the claims into a `TokenData` for the route handlers.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from coursequiz.config import JWT_SECRET, JWT_ALGORITHM, JWT_TTL_MINUTES
from coursequiz.errors import Forbidden, Unauthorized
from coursequiz.logging_config import get_logger, log_with_context

logger = get_logger("auth")

NOT_AUTHORIZED_MESSAGE = "Not authorized to access this route"
MAX_SUBJECT_LENGTH = 64

bearer = HTTPBearer(auto_error=False)


class TokenData(BaseModel):
    sub: str
    roles: List[str] = []


def create_token(user_id: str, roles: List[str], ttl_minutes: int = JWT_TTL_MINUTES) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "roles": roles,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def get_current_user(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> TokenData:
    """Resolve the authenticated user or raise Unauthorized."""
    if creds is None or not creds.credentials:
        raise Unauthorized(NOT_AUTHORIZED_MESSAGE)
    try:
        payload = jwt.decode(creds.credentials, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as exc:
        log_with_context(logger, "WARNING", "Rejected bearer token",
            extra_data={"error": type(exc).__name__})
        raise Unauthorized(NOT_AUTHORIZED_MESSAGE)
    if not payload.get("sub"):
        raise Unauthorized(NOT_AUTHORIZED_MESSAGE)
    sub = str(payload["sub"])
    # Must fit quiz_attempts.student_id.
    if len(sub) > MAX_SUBJECT_LENGTH:
        log_with_context(logger, "WARNING", "Rejected bearer token with oversized subject",
            extra_data={"length": len(sub)})
        raise Unauthorized(NOT_AUTHORIZED_MESSAGE)
    return TokenData(sub=sub, roles=payload.get("roles", []))


def require_roles(*required: str):
    """Dependency factory: the user must hold at least one of `required`."""
    def checker(user: TokenData = Depends(get_current_user)) -> TokenData:
        if not set(user.roles).intersection(required):
            log_with_context(logger, "WARNING", "Role check failed",
                context={"user_id": user.sub},
                extra_data={"required": list(required), "roles": user.roles})
            raise Forbidden("User role is not authorized to access this route")
        return user
    return checker
