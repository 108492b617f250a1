"""
API Models

Pydantic request/response models of the admin API.
"""

from __future__ import annotations

from typing import List, Literal, Optional
from pydantic import BaseModel, Field, ConfigDict


class UnlinkRequest(BaseModel):
    """
    Retire an external identity: remove whatever link it has in a domain.
    """
    domain: str = Field(..., min_length=1)
    external_key: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid")


class OperationResult(BaseModel):
    status: Literal["unlinked", "not_found"]
    domain: str
    external_key: str

    model_config = ConfigDict(extra="forbid")


class LinkLookupResponse(BaseModel):
    domain: str
    external_key: str
    account_id: int
    username: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class AccountDomainsResponse(BaseModel):
    account_id: int
    domains: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")
