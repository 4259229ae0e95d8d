"""Pydantic schemas for identities and users."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class OidcIdentity(BaseModel):
    """Claims taken from the identity provider's token."""

    sub: str = Field(min_length=1)
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    rfid: Optional[str] = Field(default=None, max_length=20)


class UserRead(BaseModel):
    user_id: int
    oauth_id: str
    name: str
    email: str
    rfid: str
    odoo_user_id: Optional[int] = None
    odoo_partner_id: Optional[int] = None
    steve_id: Optional[int] = None
    link_state: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ApiKeyRead(BaseModel):
    key_id: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PortalLoginResponse(BaseModel):
    url: str


class TagStatusResponse(BaseModel):
    user_id: int
    rfid: str
    blocked: bool
