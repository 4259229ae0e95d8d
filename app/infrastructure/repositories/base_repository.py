"""
SQLAlchemy implementation of the Base Repository.
"""

from typing import Any, Generic, Optional, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.domain.repositories.base import BaseRepository
from app.infrastructure.database import Base

ModelType = TypeVar("ModelType", bound=Base)


def _values(obj_in: Any) -> dict:
    if isinstance(obj_in, BaseModel):
        return obj_in.model_dump(exclude_unset=True)
    return dict(obj_in)


class SQLAlchemyRepository(BaseRepository[ModelType], Generic[ModelType]):
    """Generic repository for SQLAlchemy models. Flushes, never commits."""

    def __init__(self, db: Session, model: Type[ModelType]):
        self.db = db
        self.model = model

    def get_by_id(self, id: int) -> Optional[ModelType]:
        return self.db.get(self.model, id)

    def create(self, obj_in: Any) -> ModelType:
        db_obj = self.model(**_values(obj_in))
        self.db.add(db_obj)
        self.db.flush()
        return db_obj

    def update(self, db_obj: ModelType, obj_in: Any) -> ModelType:
        for field, value in _values(obj_in).items():
            if hasattr(db_obj, field):
                setattr(db_obj, field, value)
        self.db.flush()
        return db_obj
