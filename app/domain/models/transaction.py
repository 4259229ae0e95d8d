"""Charging session mirrored from SteVe — maps to the 'transactions' table."""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey
from sqlalchemy.sql import func

from app.infrastructure.database import Base


class ChargingTransaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tx_steve_id = Column(Integer, unique=True, nullable=False, index=True)

    connector_id = Column(Integer, nullable=True)
    chargebox_pk = Column(Integer, nullable=True)
    chargebox_id = Column(String(255), nullable=True)
    ocpp_tag_pk = Column(Integer, nullable=False)
    ocpp_id_tag = Column(String(20), nullable=False, index=True)

    start_timestamp = Column(DateTime(timezone=True), nullable=False)
    stop_timestamp = Column(DateTime(timezone=True), nullable=True, index=True)
    start_value = Column(Numeric(16, 3), nullable=False)
    stop_value = Column(Numeric(16, 3), nullable=True)
    delivered_energy_wh = Column(Numeric(16, 3), nullable=True)
    stop_reason = Column(String(255), nullable=True)
    stop_event_actor = Column(String(20), nullable=True)  # station, manual

    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=True, index=True)
    invoice_ref = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<ChargingTransaction {self.tx_steve_id} user={self.user_id}>"
