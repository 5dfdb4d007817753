"""Base repository with shared get-by-ID and owner-scoped lookups.

Subclasses specify model_class, id_column and entity_kind; the base raises
``NotFoundError`` for both missing rows and rows owned by someone else.

Override _owner_filter() for models whose owner lives on a parent row
(lessons are owned through their course).
"""

from typing import Generic, Optional, Type, TypeVar

from sqlalchemy.orm import Query, Session

from ..database import Base
from ..exceptions import NotFoundError

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Shared repository logic for SQLAlchemy models.

    Class variables to set in subclasses:
        model_class:  The SQLAlchemy model (e.g., Course)
        id_column:    Name of the primary-key column (default "id")
        entity_kind:  Noun used in NotFoundError messages
    """

    model_class: Type[ModelT]
    id_column: str = "id"
    entity_kind: str = "entity"

    def __init__(self, db: Session):
        self.db = db

    def _base_query(self) -> Query:
        return self.db.query(self.model_class)

    def _owner_filter(self, query: Query, owner: str) -> Query:
        return query.filter(self.model_class.owner == owner)

    def get_by_id_optional(self, entity_id: str) -> Optional[ModelT]:
        col = getattr(self.model_class, self.id_column)
        return self._base_query().filter(col == entity_id).first()

    def get_by_id(self, entity_id: str) -> ModelT:
        """Get entity by primary key. Raises NotFoundError if missing."""
        entity = self.get_by_id_optional(entity_id)
        if entity is None:
            raise NotFoundError(self.entity_kind, entity_id)
        return entity

    def get_owned(self, entity_id: str, owner: str) -> ModelT:
        """Get entity by primary key if *owner* owns it, else NotFoundError."""
        col = getattr(self.model_class, self.id_column)
        query = self._owner_filter(self._base_query().filter(col == entity_id), owner)
        entity = query.first()
        if entity is None:
            raise NotFoundError(self.entity_kind, entity_id)
        return entity
