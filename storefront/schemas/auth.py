"""
Authentication schemas.

The hosted auth provider owns accounts and sessions; this service only
needs the verified identity carried by an access token.
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AuthenticatedUser(BaseModel):
    """Identity extracted from a verified access token."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(..., description="User identifier (token subject)")
    email: Optional[str] = Field(None, description="Email claim, when present")
    role: str = Field(
        "authenticated",
        description="Role claim issued by the auth provider",
    )
