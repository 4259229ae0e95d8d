"""
Base Repository Interface.
Defines the standard contract for data access operations.

Repositories never commit; the caller owns the unit of work
(see ``app.infrastructure.database.transaction``).
"""

from typing import Any, Optional, Protocol, TypeVar

T = TypeVar("T")


class BaseRepository(Protocol[T]):
    """Interface for generic data access."""

    def get_by_id(self, id: int) -> Optional[T]:
        """Get a single entity by primary key."""
        ...

    def create(self, obj_in: Any) -> T:
        """Stage a new entity and flush it to obtain its key."""
        ...

    def update(self, db_obj: T, obj_in: Any) -> T:
        """Apply changes to an existing entity."""
        ...
