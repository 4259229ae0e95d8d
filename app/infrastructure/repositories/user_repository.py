"""
SQLAlchemy Implementation of User Repository.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import update

from app.domain.models.activity_log import ActivityLog
from app.domain.models.api_key import ApiKeyCredential
from app.domain.models.user import User
from app.domain.repositories.user_repository import UserRepository
from app.infrastructure.repositories.base_repository import SQLAlchemyRepository


class SQLAlchemyUserRepository(SQLAlchemyRepository[User], UserRepository):
    """User repository implementation using SQLAlchemy."""

    def get_by_oauth_id(self, oauth_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.oauth_id == oauth_id).first()

    def get_for_update(self, user_id: int) -> Optional[User]:
        # populate_existing so a stale identity-map copy is not returned
        return (
            self.db.query(User)
            .filter(User.user_id == user_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def find_by_tag(self, rfid: str, steve_id: int) -> Optional[User]:
        return (
            self.db.query(User)
            .filter(User.rfid == rfid, User.steve_id == steve_id)
            .first()
        )

    def get_active_api_key(self, user_id: int) -> Optional[ApiKeyCredential]:
        return (
            self.db.query(ApiKeyCredential)
            .filter(
                ApiKeyCredential.user_id == user_id,
                ApiKeyCredential.revoked_at.is_(None),
            )
            .first()
        )

    def add_api_key(self, user_id: int, key: str, salt: str) -> ApiKeyCredential:
        credential = ApiKeyCredential(user_id=user_id, key=key, salt=salt)
        self.db.add(credential)
        self.db.flush()
        return credential

    def revoke_api_key(self, key_id: int, revoked_at: datetime) -> bool:
        result = self.db.execute(
            update(ApiKeyCredential)
            .where(
                ApiKeyCredential.key_id == key_id,
                ApiKeyCredential.revoked_at.is_(None),
            )
            .values(revoked_at=revoked_at)
            .execution_options(synchronize_session="fetch")
        )
        self.db.flush()
        return result.rowcount == 1

    def record_activity(self, user_id: int, event_type: str, target_system: str, rfid: Optional[str]) -> None:
        self.db.add(
            ActivityLog(
                user_id=user_id,
                event_type=event_type,
                target_system=target_system,
                rfid=rfid,
            )
        )
