"""Pydantic schemas for the Odoo internal API."""

from typing import Optional

from pydantic import BaseModel


class OdooUserCreated(BaseModel):
    """``201`` body of ``POST /internal/user/create``."""

    user_id: int
    partner_id: int
    key: str
    key_salt: str
    salt: str
    hash: str
    timestamp: str


class OdooRotatedKey(BaseModel):
    """``200`` body of ``POST /internal/rotate_api_key``."""

    user_id: int
    key: str
    key_salt: str
    salt: str
    hash: str
    timestamp: str


class OdooInvoiceCreated(BaseModel):
    invoice_id: int | str


class OdooError(BaseModel):
    error: Optional[str] = None
