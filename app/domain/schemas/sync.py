"""Pydantic schemas for transaction sync runs."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class SyncMode(str, Enum):
    INCREMENTAL = "incremental"
    FULL = "full"
    TODAY = "today"


class SyncResult(BaseModel):
    fetched: int = 0
    unique: int = 0
    persisted: int = 0
    skipped: int = 0
    unresolved: int = 0
    invoiced: int = 0
    invoice_failures: int = 0
    high_water_mark: Optional[datetime] = None


class WatermarkRead(BaseModel):
    last_stop_timestamp: Optional[datetime] = None
    iterated_at: Optional[datetime] = None
