"""Transaction sync high-water mark — one row per distinct watermark value."""

from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.sql import func

from app.infrastructure.database import Base


class SyncIteration(Base):
    __tablename__ = "sync_iterations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    last_stop_timestamp = Column(DateTime(timezone=True), unique=True, nullable=False)
    iterated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<SyncIteration {self.last_stop_timestamp}>"
