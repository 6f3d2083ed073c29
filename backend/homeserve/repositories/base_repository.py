# backend/homeserve/repositories/base_repository.py
"""
Base repository for homeserve.

Repositories never commit. They flush so generated ids and constraint
violations surface inside the caller's unit of work, and the owning
service ends the transaction. SQLAlchemy errors are re-raised as
RepositoryException, which BaseService.transaction() turns into a rollback.
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Data access shared by every model repository.

    Attributes:
        db: SQLAlchemy session owned by the service layer
        model: mapped class this repository reads and writes
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def get_by_id(self, id: str, for_update: bool = False) -> Optional[T]:
        """
        Load one row by primary key.

        ``for_update`` adds SELECT ... FOR UPDATE so the row stays locked
        until the surrounding transaction ends. SQLite ignores it.
        """
        query = self.db.query(self.model).filter(self.model.id == id)
        if for_update:
            query = query.with_for_update()
        try:
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to load {self.model.__name__}: {str(e)}")

    def create(self, **kwargs: Any) -> T:
        """Add a row and flush it; the caller's transaction decides whether it sticks."""
        entity = self.model(**kwargs)
        try:
            self.db.add(entity)
            self.db.flush()
        except IntegrityError as exc:
            self.logger.error("Constraint violated creating %s: %s", self.model.__name__, exc.orig)
            raise RepositoryException(f"Integrity constraint violated: {exc.orig}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}")
        return entity

    def find_one_by(self, **criteria: Any) -> Optional[T]:
        """First row whose columns equal ``criteria``, or None."""
        try:
            return self.db.query(self.model).filter_by(**criteria).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Lookup on {self.model.__name__} failed: {str(e)}")
            raise RepositoryException(f"Failed to find {self.model.__name__}: {str(e)}")

    # Helpers for subclasses

    def _build_query(self) -> Query:
        return self.db.query(self.model)

    def _execute_query(self, query: Query) -> List[T]:
        try:
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"Query on {self.model.__name__} failed: {str(e)}")
            raise RepositoryException(f"Query failed: {str(e)}")

    def _execute_update(self, statement: Any) -> int:
        """
        Run a conditional UPDATE and return how many rows matched.

        Pending ORM changes are flushed first so the statement sees them.
        The session is not synchronized; callers refresh the objects they hold.
        """
        try:
            self.db.flush()
            result = self.db.execute(statement.execution_options(synchronize_session=False))
        except SQLAlchemyError as e:
            self.logger.error(f"Update on {self.model.__name__} failed: {str(e)}")
            raise RepositoryException(f"Update failed: {str(e)}")
        return int(result.rowcount or 0)
