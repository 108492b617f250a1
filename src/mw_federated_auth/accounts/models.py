"""
Local Account Models

Plain data holders for wiki accounts as seen by the federation engine.
The account store itself is an external collaborator (see
`accounts.directory`).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional


def mw_timestamp(now: Optional[datetime] = None) -> str:
    """MediaWiki's 14-character TS_MW timestamp format."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y%m%d%H%M%S")


@dataclass
class Account:
    """
    A local wiki account.

    An account with ``id == 0`` is transient: it has a name but has not been
    persisted, and can never be linked.
    """

    id: int = 0
    name: str = ""
    email: str = ""
    email_authenticated: Optional[str] = None
    real_name: str = ""
    preferences: Dict[str, str] = field(default_factory=dict)

    @property
    def is_registered(self) -> bool:
        return self.id > 0

    @property
    def is_email_confirmed(self) -> bool:
        return bool(self.email) and self.email_authenticated is not None

    def set_confirmed_email(self, email: str) -> None:
        """Set a normalized email address and mark it confirmed."""
        normalized = email.strip()
        if "@" in normalized:
            local, _, host = normalized.rpartition("@")
            normalized = f"{local}@{host.lower()}"
        self.email = normalized
        self.email_authenticated = mw_timestamp() if normalized else None

    def copy(self) -> "Account":
        return copy.deepcopy(self)


@dataclass(frozen=True)
class HintedAccount:
    """
    Best-effort suggestion of the local account an external identity
    belongs to: either an existing account, or a creatable name.
    """

    name: str
    account: Optional[Account] = None

    @property
    def exists(self) -> bool:
        return self.account is not None and self.account.is_registered
