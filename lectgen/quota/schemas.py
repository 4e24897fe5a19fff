"""
Request models for the quota admin endpoints.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .models import UID_REGEX


class RegisterAccountRequest(BaseModel):
    """Body of POST /api/admin/accounts."""
    uid: str = Field(min_length=1, max_length=128, pattern=UID_REGEX, description="Account identifier")
    tier: str = Field(default="FREE", description="FREE, VIP or ADMIN")
    cap: Optional[int] = Field(default=None, ge=0, description="Monthly cap; defaults to the FREE policy cap")
    subscription_expires_at: Optional[datetime] = Field(default=None, description="VIP subscription end")


class SetCapRequest(BaseModel):
    """Body of PUT /api/admin/accounts/<uid>/cap."""
    cap: int = Field(ge=0, description="New monthly cap")


class ChangeTierRequest(BaseModel):
    """Body of PUT /api/admin/accounts/<uid>/tier."""
    tier: str = Field(description="FREE, VIP or ADMIN")
    subscription_expires_at: Optional[datetime] = Field(default=None, description="VIP subscription end")


class UpdateSettingsRequest(BaseModel):
    """Body of PUT /api/admin/settings."""
    free_monthly_cap: int = Field(ge=0, description="Cap for new FREE accounts; existing FREE accounts are re-capped")
