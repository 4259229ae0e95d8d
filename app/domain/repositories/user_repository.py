"""
User Repository Interface.
Defines data access for users, their Odoo credentials and the activity log.
"""

from datetime import datetime
from typing import Optional

from app.domain.repositories.base import BaseRepository
from app.domain.models.user import User
from app.domain.models.api_key import ApiKeyCredential


class UserRepository(BaseRepository[User]):
    """Interface for User-specific operations."""

    def get_by_oauth_id(self, oauth_id: str) -> Optional[User]:
        ...

    def get_for_update(self, user_id: int) -> Optional[User]:
        """Re-read a user holding a row lock for the current transaction."""
        ...

    def find_by_tag(self, rfid: str, steve_id: int) -> Optional[User]:
        """Resolve a charging session owner by RFID and SteVe tag pk."""
        ...

    def get_active_api_key(self, user_id: int) -> Optional[ApiKeyCredential]:
        ...

    def add_api_key(self, user_id: int, key: str, salt: str) -> ApiKeyCredential:
        ...

    def revoke_api_key(self, key_id: int, revoked_at: datetime) -> bool:
        """Revoke an active key. Returns False when no active row matched."""
        ...

    def record_activity(self, user_id: int, event_type: str, target_system: str, rfid: Optional[str]) -> None:
        ...
