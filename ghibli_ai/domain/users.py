from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class AuthenticatedUser(BaseModel):
    """Identity resolved from a verified Supabase access token."""

    id: str = Field(..., min_length=1, description="Supabase auth user id (JWT subject)")
    email: Optional[str] = Field(default=None, description="Email claim, when present")
    role: Optional[str] = None
