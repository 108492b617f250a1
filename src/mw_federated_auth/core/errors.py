"""
Error Taxonomy & Global Error Handling

This module defines the exception hierarchy shared by the federation engine
and the application-wide exception handlers of the admin API.

Design Goals
------------
- Never leak internal exception details (directory hosts, queries) to clients
- Every federation failure carries a short, user-safe message
- Log full stack traces internally for debugging
- Keep the engine itself framework-agnostic: only the handlers know FastAPI
"""

from __future__ import annotations

import logging
from typing import Dict, Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("fedauth.errors")


# ---------------------------------------------------------------------
# Exception Hierarchy
# ---------------------------------------------------------------------

class FederationError(Exception):
    """
    Base class for every error raised by the federation engine.

    Attributes
    ----------
    user_message : str
        Message that is safe to show to the person logging in.
    status_code : int
        HTTP status used when the error reaches the admin API.
    """

    user_message = "Authentication failed."
    status_code = 500

    def __init__(self, message: str = "", *, user_message: Optional[str] = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class CredentialError(FederationError):
    """The external source rejected the supplied credentials."""

    user_message = "Incorrect username or password."
    status_code = 401


class ConfigurationError(FederationError):
    """A domain is misconfigured. Never user-fixable."""

    user_message = "Authentication is misconfigured. Please contact an administrator."
    status_code = 500


class UnmappedAttributeError(ConfigurationError):
    """No provider attribute is configured for an identity attribute kind."""


class UnknownDomainError(FederationError):
    user_message = "Unknown authentication domain."
    status_code = 404


class ProviderError(FederationError):
    """Transient infrastructure fault in an identity provider."""

    user_message = "Authentication failed. Please try again later."
    status_code = 502


class DirectoryError(ProviderError):
    """A directory query failed."""


class DirectoryConnectionError(DirectoryError):
    """The directory server could not be reached."""


class DirectoryBindError(DirectoryError):
    """The directory service account could not bind."""


class LinkConflictError(FederationError):
    """
    The external identity is already linked to a different local account.

    Attributes
    ----------
    existing_account_id : Optional[int]
        Account currently holding the link, when known.
    """

    user_message = "This external account is already linked to a different wiki account."
    status_code = 409

    def __init__(
        self,
        message: str = "",
        *,
        existing_account_id: Optional[int] = None,
        user_message: Optional[str] = None,
    ) -> None:
        super().__init__(message, user_message=user_message)
        self.existing_account_id = existing_account_id


class AccountCreationDeniedError(FederationError):
    user_message = "No wiki account is linked and automatic account creation is not allowed."
    status_code = 403


class SyncError(FederationError):
    """Attribute synchronization failed after a successful authentication."""

    user_message = "Your account details could not be synchronized."
    status_code = 502


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def federation_error_handler(
    request: Request,
    exc: FederationError,
) -> JSONResponse:
    """
    Convert engine errors into deterministic JSON responses.

    Only the user-safe message is returned. Configuration errors are
    logged at critical severity, everything else at warning.
    """
    if isinstance(exc, ConfigurationError):
        logger.critical(
            "Configuration error during request %s %s: %s",
            request.method,
            request.url.path,
            exc,
        )
    else:
        logger.warning(
            "Federation error during request %s %s: %s",
            request.method,
            request.url.path,
            exc,
        )

    payload: Dict[str, Any] = {
        "error": type(exc).__name__,
        "detail": exc.user_message,
    }

    return JSONResponse(
        status_code=exc.status_code,
        content=payload,
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    This handler should be registered with FastAPI as the final safety net
    for any exception not otherwise handled by route-level or framework-level
    handlers.

    Parameters
    ----------
    request : Request
        The incoming HTTP request that triggered the exception.

    exc : Exception
        The uncaught exception instance.

    Returns
    -------
    JSONResponse
        A JSON 500 response with a minimal error payload.
    """

    # Log full traceback internally (never returned to client)
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
