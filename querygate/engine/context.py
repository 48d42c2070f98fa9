"""
SecurityContext -- who is asking.  Supplied with every request by the
authentication layer and never persisted.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class SecurityContext(BaseModel):
    user_id: str = Field(..., min_length=1, description="Authenticated user id")
    tenant_id: str = Field(..., min_length=1, description="Tenant / workspace the user belongs to")
    role: str = Field(..., min_length=1, description="Role name used to select row-level policies")
    segment: str | None = None
    email: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict, description="Extra claims usable in policy templates")
