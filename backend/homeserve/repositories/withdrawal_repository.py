"""Worker withdrawal request queries."""

from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.enums import WithdrawalStatus
from ..models.wallet import WithdrawalRequest
from .base_repository import BaseRepository


class WithdrawalRepository(BaseRepository[WithdrawalRequest]):
    def __init__(self, db: Session):
        super().__init__(db, WithdrawalRequest)

    def get_pending_for_worker(self, worker_id: str) -> Optional[WithdrawalRequest]:
        return self.find_one_by(worker_id=worker_id, status=WithdrawalStatus.PENDING.value)

    def list_requests(
        self,
        *,
        status: Optional[str] = None,
        worker_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[WithdrawalRequest]:
        query = self._build_query()
        if status is not None:
            query = query.filter(WithdrawalRequest.status == status)
        if worker_id is not None:
            query = query.filter(WithdrawalRequest.worker_id == worker_id)
        query = query.order_by(WithdrawalRequest.created_at.desc()).offset(skip).limit(limit)
        return self._execute_query(query)
