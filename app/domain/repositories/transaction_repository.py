"""
Transaction Repository Interface.
Defines data access for charging sessions and the sync watermark.
"""

from datetime import datetime
from typing import List, Optional

from app.domain.repositories.base import BaseRepository
from app.domain.models.transaction import ChargingTransaction
from app.domain.models.sync_iteration import SyncIteration


class TransactionRepository(BaseRepository[ChargingTransaction]):
    """Interface for ChargingTransaction-specific operations."""

    def get_by_steve_id(self, tx_steve_id: int) -> Optional[ChargingTransaction]:
        ...

    def list_uninvoiced(self, limit: int = 100) -> List[ChargingTransaction]:
        """Finished sessions with a known owner and no invoice yet, oldest first."""
        ...

    def get_watermark(self) -> Optional[SyncIteration]:
        ...

    def set_watermark(self, last_stop_timestamp: datetime) -> SyncIteration:
        ...
