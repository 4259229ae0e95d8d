"""Best-effort activity log writer.

Entries written here use their own session so a failing insert can never
roll back or block the caller's primary operation.
"""

from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.domain.models.user import User
from app.infrastructure.database import SessionLocal, session_scope
from app.infrastructure.repositories.user_repository import SQLAlchemyUserRepository

logger = structlog.get_logger(__name__)

EVENT_CREATE = "Create"
EVENT_BLOCK = "Block"
EVENT_UNBLOCK = "Unblock"
EVENT_KEY_ROTATION = "KeyRotation"

SYSTEM_LOCAL = "Local"
SYSTEM_ODOO = "Odoo"
SYSTEM_STEVE = "SteVe"


def record_activity(
    user_id: int,
    event_type: str,
    target_system: str,
    rfid: Optional[str] = None,
    session_factory: sessionmaker = SessionLocal,
) -> bool:
    """Append an activity entry; returns False (and logs) instead of raising."""
    try:
        with session_scope(session_factory) as db:
            SQLAlchemyUserRepository(db, User).record_activity(user_id, event_type, target_system, rfid)
            db.commit()
    except SQLAlchemyError as e:
        logger.warning(
            "Activity log write failed",
            user_id=user_id,
            event_type=event_type,
            target_system=target_system,
            error=str(e),
        )
        return False
    return True
