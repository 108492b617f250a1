"""
JWT Verification & Scope Enforcement

This module is responsible for:

1. Verifying bearer JWTs issued by the wiki to operators of the admin API.
2. Enforcing scope-based authorization rules.
3. Producing a validated `AdminContext` object to downstream routes.

Security Model
--------------
- Tokens are signed with a dedicated admin secret.
- They must be short-lived and include issuer, audience and scope claims.
- Mutating link operations require the `link_admin` scope.
"""

from __future__ import annotations

import jwt
from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..config import settings
from .models import AdminContext


SCOPE_LINK_READ = "link_read"
SCOPE_LINK_ADMIN = "link_admin"


# ---------------------------------------------------------------------
# Security Scheme
# ---------------------------------------------------------------------

security = HTTPBearer(auto_error=True)


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class JWTVerificationError(RuntimeError):
    """Raised internally when token verification fails before converting to HTTP errors."""


# ---------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------

def _validate_jwt_config() -> None:
    if not settings.jwt_admin_secret.get_secret_value():
        raise JWTVerificationError("Missing jwt_admin_secret in configuration.")
    if not settings.jwt_algo:
        raise JWTVerificationError("Missing jwt_algo in configuration.")


def _decode_admin_token(token: str) -> dict:
    """
    Decode and validate an admin JWT.

    Raises
    ------
    Various JWT-related exceptions, which the public wrapper handles.
    """
    _validate_jwt_config()

    return jwt.decode(
        token,
        settings.jwt_admin_secret.get_secret_value(),
        algorithms=[settings.jwt_algo],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
        options={
            "require": ["iss", "aud", "iat", "exp", "user", "scope"],
        },
    )


# ---------------------------------------------------------------------
# Public Authentication Dependency
# ---------------------------------------------------------------------

def verify_admin_jwt(
    creds: HTTPAuthorizationCredentials = Depends(security),
) -> AdminContext:
    """
    Verify an admin JWT and construct an AdminContext.

    Expected claims:
      - iss: configured issuer
      - aud: configured audience
      - user: wiki username of the operator
      - scope: list of granted operations

    Raises
    ------
    HTTPException(401) for invalid or expired tokens.
    """
    try:
        payload = _decode_admin_token(creds.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired.",
        )
    except jwt.InvalidAudienceError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token audience.",
        )
    except jwt.InvalidIssuerError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token issuer.",
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or malformed token.",
        )
    except JWTVerificationError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="JWT verification configuration error.",
        )

    username = payload.get("user")
    scopes = payload.get("scope")

    if not username:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing 'user' claim.",
        )

    if not isinstance(scopes, list):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="'scope' claim must be a list.",
        )

    return AdminContext(username=username, scopes=scopes)


# ---------------------------------------------------------------------
# Scope enforcement helper
# ---------------------------------------------------------------------

def require_scopes(*required_scopes: str) -> Callable:
    """
    Create a FastAPI dependency that enforces scope-based access control.

    Example:
        @router.post("/links/unlink")
        async def unlink(admin = Depends(require_scopes("link_admin"))):
            ...
    """

    def check_scopes(
        admin: AdminContext = Depends(verify_admin_jwt),
    ) -> AdminContext:

        missing = [s for s in required_scopes if s not in admin.scopes]

        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scope(s): {', '.join(missing)}",
            )

        return admin

    return check_scopes
