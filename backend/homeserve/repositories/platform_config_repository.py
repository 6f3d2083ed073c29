"""Key/value access to the platform_config table."""

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..models.platform_config import PlatformConfig
from .base_repository import BaseRepository


class PlatformConfigRepository(BaseRepository[PlatformConfig]):
    def __init__(self, db: Session):
        super().__init__(db, PlatformConfig)

    def get_value(self, key: str) -> Optional[Dict[str, Any]]:
        row = self.db.get(PlatformConfig, key)
        return dict(row.value_json) if row is not None else None

    def upsert_value(self, key: str, value: Dict[str, Any]) -> PlatformConfig:
        row = self.db.get(PlatformConfig, key)
        if row is None:
            row = PlatformConfig(key=key, value_json=value)
            self.db.add(row)
        else:
            row.value_json = value
        self.db.flush()
        return row
