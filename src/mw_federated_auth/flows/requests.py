"""
Authentication Requests & Responses

Data exchanged between the multi-step flow and the surrounding
authentication framework.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..providers.base import FieldSpec, ProviderSession


class AuthAction(str, Enum):
    LOGIN = "login"
    LINK = "link"
    CHANGE = "change"
    UNLINK = "unlink"
    REMOVE = "remove"


# ---------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------

@dataclass
class AuthRequest:
    """
    Credentials for one domain. `domain` None stands for local (wiki
    password) login.
    """

    domain: Optional[str]
    description: Optional[str] = None
    fields: List[FieldSpec] = field(default_factory=list)
    values: Dict[str, str] = field(default_factory=dict)
    action: AuthAction = AuthAction.LOGIN
    username: Optional[str] = None

    @property
    def is_local(self) -> bool:
        return self.domain is None


@dataclass
class LinkRequest:
    """Link, unlink or remove the link between an account and an external key."""

    domain: str
    description: Optional[str] = None
    external_key: Optional[str] = None
    action: AuthAction = AuthAction.LINK
    username: Optional[str] = None


@dataclass
class AttrRequest:
    """
    Change provider attributes of a linked identity. `auth_fields` is set
    when the provider cannot enter a session without fresh credentials.
    """

    domain: str
    description: Optional[str] = None
    external_key: Optional[str] = None
    attribute_fields: List[FieldSpec] = field(default_factory=list)
    auth_fields: Optional[List[FieldSpec]] = None
    attribute_values: Dict[str, str] = field(default_factory=dict)
    auth_values: Dict[str, str] = field(default_factory=dict)
    action: AuthAction = AuthAction.CHANGE
    username: Optional[str] = None
    provider_session: Optional[ProviderSession] = None


# ---------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------

class ResponseStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    ABSTAIN = "abstain"


@dataclass
class AuthResponse:
    """
    Outcome of an authentication step.

    A PASS with `create_account` asks the framework to create `username`;
    a PASS with a `link_request` and no username asks it to let the user
    link or create an account manually.
    """

    status: ResponseStatus
    username: Optional[str] = None
    message: Optional[str] = None
    link_request: Optional[LinkRequest] = None
    create_account: bool = False

    @classmethod
    def new_pass(cls, username: Optional[str] = None, **kwargs: Any) -> "AuthResponse":
        return cls(ResponseStatus.PASS, username=username, **kwargs)

    @classmethod
    def new_fail(cls, message: str) -> "AuthResponse":
        return cls(ResponseStatus.FAIL, message=message)

    @classmethod
    def new_abstain(cls) -> "AuthResponse":
        return cls(ResponseStatus.ABSTAIN)


@dataclass
class ChangeStatus:
    ok: bool
    message: Optional[str] = None
    ignored: bool = False

    @classmethod
    def good(cls) -> "ChangeStatus":
        return cls(True)

    @classmethod
    def ignore(cls) -> "ChangeStatus":
        return cls(True, ignored=True)

    @classmethod
    def fatal(cls, message: str) -> "ChangeStatus":
        return cls(False, message=message)
