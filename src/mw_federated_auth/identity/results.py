"""
Mapping results.

`FederatedDomain.map_provider_user` returns exactly one of these instead of
filling output parameters.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from ..accounts.models import Account, HintedAccount
from ..core.errors import FederationError


@dataclass(frozen=True)
class Mapped:
    """An existing, unlinked (or same-key) account was found and accepted."""

    account: Account


@dataclass(frozen=True)
class Hinted:
    """
    No account was mapped, but a hint was found. `error` holds a
    configuration error of the primary mapping step, if any.
    """

    hint: HintedAccount
    error: Optional[FederationError] = None


@dataclass(frozen=True)
class Failed:
    error: FederationError


@dataclass(frozen=True)
class NoMatch:
    pass


MapResult = Union[Mapped, Hinted, Failed, NoMatch]
