"""Worker lookups used by assignment and distance pricing."""

from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.worker import Worker
from .base_repository import BaseRepository


class WorkerRepository(BaseRepository[Worker]):
    def __init__(self, db: Session):
        super().__init__(db, Worker)

    def get_active(self, worker_id: str) -> Optional[Worker]:
        return self.find_one_by(id=worker_id, is_active=True)

    def list_active_in_city(self, city: Optional[str], limit: int = 50) -> List[Worker]:
        query = self._build_query().filter(Worker.is_active.is_(True))
        if city:
            query = query.filter(func.lower(Worker.city) == city.strip().lower())
        return self._execute_query(query.order_by(Worker.name.asc()).limit(limit))
