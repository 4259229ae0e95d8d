"""User domain model — maps to the 'users' table."""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func

from app.infrastructure.database import Base


class User(Base):
    __tablename__ = "users"

    user_id = Column(Integer, primary_key=True, autoincrement=True)
    oauth_id = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=False)
    rfid = Column(String(20), unique=True, nullable=False, index=True)

    # Back-filled once each downstream account exists, never overwritten
    odoo_user_id = Column(Integer, unique=True, nullable=True)
    odoo_partner_id = Column(Integer, nullable=True)
    steve_id = Column(Integer, unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<User {self.user_id} - {self.oauth_id}>"
