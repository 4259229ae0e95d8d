"""Activity log — append-only audit trail of user-affecting actions."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.sql import func

from app.infrastructure.database import Base


class ActivityLog(Base):
    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.user_id"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)  # Create, Block, Unblock, KeyRotation
    target_system = Column(String(50), nullable=False)  # Local, Odoo, SteVe
    rfid = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<ActivityLog {self.event_type} {self.target_system} user={self.user_id}>"
