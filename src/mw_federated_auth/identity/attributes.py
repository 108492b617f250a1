"""
Attribute Resolver

Translates abstract identity attribute kinds (name, email, real name) into
provider-specific attribute keys, and reads their values from an external
identity record.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, List, Mapping, Optional

from ..core.errors import ConfigurationError, UnmappedAttributeError

if TYPE_CHECKING:
    from ..providers.base import ExternalIdentityRecord, Provider

logger = logging.getLogger("fedauth.attributes")


class AttributeKind(str, Enum):
    NAME = "name"
    EMAIL = "email"
    REALNAME = "realname"


class MapType(str, Enum):
    """Local account attribute used to match or hint an external identity."""

    USERNAME = "username"
    EMAIL = "email"
    REALNAME = "realname"

    @property
    def kind(self) -> AttributeKind:
        return _MAP_TYPE_KINDS[self]

    @classmethod
    def parse(cls, value: str, domain: str = "") -> "MapType":
        """
        Raises
        ------
        ConfigurationError
            If `value` is not a known map type.
        """
        try:
            return cls(value)
        except ValueError:
            logger.critical("Invalid map type %r in domain %s", value, domain)
            raise ConfigurationError(f"Invalid map type {value!r} in domain {domain}") from None


_MAP_TYPE_KINDS = {
    MapType.USERNAME: AttributeKind.NAME,
    MapType.EMAIL: AttributeKind.EMAIL,
    MapType.REALNAME: AttributeKind.REALNAME,
}


class AttributeResolver:
    """
    Resolve attribute kinds for one domain.

    The domain's own `{kind: key}` table wins; otherwise the provider's
    conventional default is used.
    """

    def __init__(
        self,
        domain: str,
        provider: "Provider",
        overrides: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.domain = domain
        self.provider = provider
        self.overrides = dict(overrides or {})

    def resolve_key(self, kind: AttributeKind) -> str:
        """
        Raises
        ------
        UnmappedAttributeError
            If neither configuration nor provider define a key for `kind`.
        """
        key = self.overrides.get(kind.value) or self.provider.map_user_attribute(kind)
        if not key:
            logger.critical("User attribute %s does not map in domain %s", kind.value, self.domain)
            raise UnmappedAttributeError(
                f"User attribute {kind.value} does not map in domain {self.domain}"
            )
        return key

    def get_map_attribute_values(self, record: "ExternalIdentityRecord", kind: AttributeKind) -> List[str]:
        """Ordered, non-empty string values of `kind` in `record`."""
        key = self.resolve_key(kind)
        return [v for v in record.get(key) if v and v.strip()]
