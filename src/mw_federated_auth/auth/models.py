"""
Authentication Models

Strongly-typed caller context for the admin API, produced after JWT
verification.
"""

from typing import List
from pydantic import BaseModel, Field, ConfigDict


class AdminContext(BaseModel):
    """
    Authenticated operator derived from a verified JWT.
    """

    username: str = Field(
        ...,
        min_length=1,
        description="Wiki username of the operator.",
    )

    scopes: List[str] = Field(
        default_factory=list,
        description="Scopes granted to the operator for API access.",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",             # Prevents claim injection via unexpected fields
    )
