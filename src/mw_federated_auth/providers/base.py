"""
Provider Capability Interface

Every federated domain is backed by a Provider: the object that checks
credentials against the external identity source and exposes the
authenticated principal as a ProviderSession.

Concrete providers are created by factories registered in
`providers.registry`, never by name-based reflection.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from ..identity.attributes import AttributeKind


# ---------------------------------------------------------------------
# Records & Fields
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class FieldSpec:
    """Description of a form field a provider needs from the user."""

    name: str
    type: str = "string"
    label: str = ""
    help: str = ""
    sensitive: bool = False
    optional: bool = False


class ExternalIdentityRecord:
    """
    An authenticated principal: its stable external key plus a bag of
    multi-valued attributes.

    Attribute names are matched case-insensitively, as directory servers
    do.
    """

    def __init__(self, external_key: str, attributes: Optional[Mapping[str, List[str]]] = None) -> None:
        self.external_key = external_key
        self._attributes: Dict[str, List[str]] = {}
        self._names: Dict[str, str] = {}
        for name, values in (attributes or {}).items():
            self.set(name, values)

    def get(self, name: str) -> List[str]:
        key = self._names.get(name.lower())
        if key is None:
            return []
        return list(self._attributes[key])

    def set(self, name: str, values: Optional[List[str]]) -> None:
        key = self._names.setdefault(name.lower(), name)
        self._attributes[key] = [str(v) for v in (values or [])]

    def has(self, name: str) -> bool:
        return bool(self.get(name))

    def as_dict(self) -> Dict[str, List[str]]:
        return {k: list(v) for k, v in self._attributes.items()}

    def __repr__(self) -> str:
        return f"ExternalIdentityRecord({self.external_key!r}, attributes={sorted(self._attributes)})"


# ---------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------

class ProviderSession(ABC):
    """An authenticated (or sudo-entered) session with a provider."""

    @property
    @abstractmethod
    def user_id(self) -> str:
        """Stable external key of the principal."""

    @abstractmethod
    def get_user_attributes(self, attribute: str) -> List[str]:
        """Values of a provider attribute, empty if absent."""

    @abstractmethod
    async def set_user_attributes(self, attribute: str, values: Optional[List[str]]) -> None:
        """
        Write a provider attribute.

        Raises
        ------
        ProviderError
            If the source rejects the write.
        """

    @property
    @abstractmethod
    def record(self) -> ExternalIdentityRecord:
        """The identity record backing this session."""


@dataclass
class RecordSession(ProviderSession):
    """
    Session backed by an in-memory record. Writes only update the record.

    Useful for providers whose attributes are read-only, and in tests.
    """

    identity: ExternalIdentityRecord
    writes: List[tuple] = field(default_factory=list)

    @property
    def user_id(self) -> str:
        return self.identity.external_key

    @property
    def record(self) -> ExternalIdentityRecord:
        return self.identity

    def get_user_attributes(self, attribute: str) -> List[str]:
        return self.identity.get(attribute)

    async def set_user_attributes(self, attribute: str, values: Optional[List[str]]) -> None:
        self.writes.append((attribute, list(values or [])))
        self.identity.set(attribute, values)


# ---------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------

class Provider(ABC):
    """
    Fixed capability interface of an identity source.

    Credential failures are reported as CredentialError, infrastructure
    faults as ProviderError. Returning None from `authenticate` means the
    provider abstains (for example because required fields are missing).
    """

    domain: str

    @abstractmethod
    def describe(self) -> str:
        """Human-readable description of the source."""

    @abstractmethod
    def authentication_fields(self, external_key: Optional[str] = None) -> List[FieldSpec]:
        ...

    def attribute_fields(self, external_key: str) -> List[FieldSpec]:
        return []

    @abstractmethod
    def map_user_attribute(self, kind: AttributeKind) -> Optional[str]:
        """Default provider attribute key for an identity attribute kind."""

    @abstractmethod
    async def authenticate(self, values: Mapping[str, str]) -> Optional[ProviderSession]:
        ...

    def can_sudo(self, external_key: str) -> bool:
        return False

    async def sudo(self, external_key: str) -> Optional[ProviderSession]:
        return None

    async def find_user(self, attribute: str, value: str) -> Optional[str]:
        """External key of the principal whose `attribute` equals `value`."""
        return None

    async def close(self) -> None:
        return None
