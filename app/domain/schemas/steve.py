"""Pydantic schemas for SteVe REST payloads."""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.core.time_utils import as_utc


class SteveTransaction(BaseModel):
    """A charging session as returned by ``GET /transactions``."""

    id: int = Field(gt=0)
    connectorId: Optional[int] = Field(default=None, gt=0)
    chargeBoxPk: Optional[int] = Field(default=None, gt=0)
    ocppTagPk: int = Field(gt=0)
    chargeBoxId: Optional[str] = None
    ocppIdTag: str = Field(min_length=1)
    startTimestamp: datetime
    stopTimestamp: Optional[datetime] = None
    # Meter readings arrive as strings, e.g. "1520"
    startValue: Decimal
    stopValue: Optional[Decimal] = None
    stopReason: Optional[str] = None
    stopEventActor: Optional[Literal["station", "manual"]] = None

    model_config = {"extra": "ignore"}

    @field_validator("startTimestamp", "stopTimestamp")
    @classmethod
    def normalize_timestamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @model_validator(mode="after")
    def check_meter_order(self) -> "SteveTransaction":
        if self.stopValue is not None and self.startValue > self.stopValue:
            raise ValueError("startValue must not exceed stopValue")
        return self

    @property
    def delivered_energy_wh(self) -> Optional[Decimal]:
        if self.stopValue is None:
            return None
        return self.stopValue - self.startValue


class SteveOcppTag(BaseModel):
    """An OCPP tag (RFID) as returned by ``/ocppTags``."""

    ocppTagPk: int = Field(gt=0)
    idTag: str
    inTransaction: Optional[bool] = None
    blocked: bool
    maxActiveTransactionCount: int
    expiryDate: Optional[datetime] = None
    activeTransactionCount: Optional[int] = None
    note: Optional[str] = None

    model_config = {"extra": "allow"}
