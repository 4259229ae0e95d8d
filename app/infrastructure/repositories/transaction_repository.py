"""
SQLAlchemy Implementation of Transaction Repository.
"""

from datetime import datetime
from typing import List, Optional

from app.core.time_utils import as_utc, utc_now
from app.domain.models.sync_iteration import SyncIteration
from app.domain.models.transaction import ChargingTransaction
from app.domain.repositories.transaction_repository import TransactionRepository
from app.infrastructure.repositories.base_repository import SQLAlchemyRepository


class SQLAlchemyTransactionRepository(SQLAlchemyRepository[ChargingTransaction], TransactionRepository):
    """ChargingTransaction repository implementation using SQLAlchemy."""

    def get_by_steve_id(self, tx_steve_id: int) -> Optional[ChargingTransaction]:
        return (
            self.db.query(ChargingTransaction)
            .filter(ChargingTransaction.tx_steve_id == tx_steve_id)
            .first()
        )

    def list_uninvoiced(self, limit: int = 100) -> List[ChargingTransaction]:
        return (
            self.db.query(ChargingTransaction)
            .filter(
                ChargingTransaction.user_id.isnot(None),
                ChargingTransaction.invoice_ref.is_(None),
                ChargingTransaction.stop_timestamp.isnot(None),
            )
            .order_by(ChargingTransaction.stop_timestamp.asc(), ChargingTransaction.tx_steve_id.asc())
            .limit(limit)
            .all()
        )

    def get_watermark(self) -> Optional[SyncIteration]:
        return (
            self.db.query(SyncIteration)
            .order_by(SyncIteration.last_stop_timestamp.desc())
            .first()
        )

    def set_watermark(self, last_stop_timestamp: datetime) -> SyncIteration:
        """Insert the watermark, or bump ``iterated_at`` if the value already exists."""
        value = as_utc(last_stop_timestamp)
        existing = (
            self.db.query(SyncIteration)
            .filter(SyncIteration.last_stop_timestamp == value)
            .first()
        )
        if existing:
            existing.iterated_at = utc_now()
            self.db.flush()
            return existing

        iteration = SyncIteration(last_stop_timestamp=value, iterated_at=utc_now())
        self.db.add(iteration)
        self.db.flush()
        return iteration
