"""
Domain Configuration

Immutable configuration models for federated identity domains, plus the
loader that reads them once per process from a JSON document.

A domain document looks like::

    {
      "enable_local": true,
      "domains": {
        "corp": {
          "provider": "ldap",
          "description": "Corporate directory",
          "config": {
            "connection": {"host": "ldap.example.org", "tls": true,
                           "bind_dn": "cn=wiki,dc=example,dc=org",
                           "bind_pass": "secret",
                           "base_dn": "dc=example,dc=org"},
            "user": {"base_rdn": "ou=people", "search_attr": "uid"}
          },
          "user": {"map_type": "email", "hint_type": "username",
                   "auto_create": true},
          "sync": {"pull": [{"source": {"type": "mapped", "value": "email"},
                             "destination": {"type": "profile", "value": "email"}}]}
        }
      }
    }

Attribute-kind and value-reference literals are kept as plain strings here
and validated where they are used, so a bad literal is reported as a
ConfigurationError by the component that needs it.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

from .core.errors import ConfigurationError

logger = logging.getLogger("fedauth.config")


_FROZEN = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------
# Mapping Policy
# ---------------------------------------------------------------------

class UserPolicy(BaseModel):
    """
    How a first-time external identity is matched to a local account.

    `map_type` selects the attribute used for direct mapping, `hint_type`
    the attribute used to propose an account when mapping fails. When both
    are equal, hinting is skipped.
    """

    map_type: str = "username"
    hint_type: str = "username"
    auto_create: Optional[bool] = None
    attributes: Dict[str, str] = Field(
        default_factory=dict,
        description="Attribute kind (name/email/realname) to provider attribute key.",
    )

    model_config = _FROZEN


# ---------------------------------------------------------------------
# Synchronization Policy
# ---------------------------------------------------------------------

class ValueRef(BaseModel):
    """
    A value source or destination in a sync rule.

    type is one of: literal, attribute, mapped, preference, profile.
    """

    type: str
    value: str

    model_config = _FROZEN


class SyncRule(BaseModel):
    source: ValueRef
    destination: ValueRef
    overwrite: bool = True
    delete: bool = False
    filter: Optional[str] = None

    model_config = _FROZEN


class SyncPolicy(BaseModel):
    pull: List[SyncRule] = Field(default_factory=list)
    push: List[SyncRule] = Field(default_factory=list)

    model_config = _FROZEN

    @property
    def is_empty(self) -> bool:
        return not self.pull and not self.push


# ---------------------------------------------------------------------
# LDAP Provider Configuration
# ---------------------------------------------------------------------

class LDAPConnectionConfig(BaseModel):
    """
    Directory connection settings.

    When `uri` is absent it is built from proto/host/port, switching to
    ldaps:// when `tls` is set.
    """

    uri: Optional[str] = None
    host: str = "localhost"
    port: Optional[int] = None
    proto: str = "ldap"
    tls: bool = False
    starttls: bool = False
    version: int = 3
    referrals: bool = False
    timeout: Optional[int] = None

    ca_file: Optional[str] = None
    ca_dir: Optional[str] = None
    cert_file: Optional[str] = None
    key_file: Optional[str] = None

    bind_dn: Optional[str] = None
    bind_pass: Optional[SecretStr] = None
    base_dn: Optional[str] = None

    model_config = _FROZEN


class LDAPUserConfig(BaseModel):
    base_dn: Optional[str] = None
    base_rdn: Optional[str] = None
    name_attr: str = "uid"
    realname_attr: str = "cn"
    email_attr: str = "mail"
    search_filter: Optional[str] = None
    search_attr: str = "uid"
    bind_attr: Optional[str] = None
    editable_attributes: List[str] = Field(default_factory=list)

    model_config = _FROZEN


class LDAPProviderConfig(BaseModel):
    connection: LDAPConnectionConfig = Field(default_factory=LDAPConnectionConfig)
    user: LDAPUserConfig = Field(default_factory=LDAPUserConfig)

    model_config = _FROZEN


# ---------------------------------------------------------------------
# Domains
# ---------------------------------------------------------------------

class DomainOptions(BaseModel):
    """
    Configuration of one federated domain.

    `config` is passed verbatim to the provider factory registered for
    `provider`. `group` is accepted for compatibility but not evaluated.
    """

    provider: str
    enabled: bool = True
    description: Optional[str] = None
    auto_create: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)
    user: UserPolicy = Field(default_factory=UserPolicy)
    sync: SyncPolicy = Field(default_factory=SyncPolicy)
    group: Optional[Dict[str, Any]] = None

    model_config = _FROZEN

    @property
    def should_auto_create(self) -> bool:
        if self.user.auto_create is not None:
            return self.user.auto_create
        return self.auto_create


class FederationOptions(BaseModel):
    enable_local: bool = True
    domains: Dict[str, DomainOptions] = Field(default_factory=dict)

    model_config = _FROZEN


# ---------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------

def parse_federation_options(data: Dict[str, Any]) -> FederationOptions:
    """
    Validate a raw configuration mapping.

    Raises
    ------
    ConfigurationError
        If the document does not match the schema.
    """
    try:
        return FederationOptions.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid domain configuration: {exc}") from exc


def load_federation_options(path: Union[str, Path]) -> FederationOptions:
    """
    Read and validate the domain configuration file.

    Parameters
    ----------
    path : str | Path
        Location of the JSON document.

    Returns
    -------
    FederationOptions

    Raises
    ------
    ConfigurationError
        If the file is missing, is not valid JSON or fails validation.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Domain configuration not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Domain configuration is not valid JSON: {path}: {exc}") from exc

    options = parse_federation_options(data)
    logger.info("Loaded %d domain definition(s) from %s", len(options.domains), path)
    return options
