"""
Authenticated request context.

SECURITY: AuthContext only carries identity claims from the verified
token. Roles, company membership and super admin status are ALWAYS
loaded from the database, never trusted from claims.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class AuthContext(BaseModel):
    """Identity extracted from a verified access token."""
    user_id: str = Field(..., description="Token subject (users.id)")
    email: Optional[str] = None
    name: Optional[str] = None
    claims: dict[str, Any] = Field(default_factory=dict)
