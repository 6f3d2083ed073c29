"""Service helpers for runtime fee and coin configuration."""

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy.orm import Session

from ..repositories.factory import RepositoryFactory
from ..schemas.pricing import CoinConfig, CoinConfigUpdate, FeeConfig, FeeConfigUpdate
from .base import BaseService

FEE_CONFIG_KEY = "fees"
COIN_CONFIG_KEY = "coins"


class ConfigService(BaseService):
    """
    Reads and writes the fee/coin configuration rows.

    Callers receive frozen snapshots, so a pricing run sees one consistent
    configuration even if an admin edits it concurrently.
    """

    def __init__(self, db: Session) -> None:
        super().__init__(db)
        self.repo = RepositoryFactory.create_platform_config_repository(db)

    def _load(self, key: str, default: Dict[str, Any]) -> Dict[str, Any]:
        value = self.repo.get_value(key)
        if value is None:
            self.repo.upsert_value(key, default)
            self.logger.info("Created default %s config", key)
            return dict(default)
        return value

    def get_fee_config(self) -> FeeConfig:
        return FeeConfig(**self._load(FEE_CONFIG_KEY, FeeConfig().model_dump(mode="json")))

    def get_coin_config(self) -> CoinConfig:
        return CoinConfig(**self._load(COIN_CONFIG_KEY, CoinConfig().model_dump(mode="json")))

    @BaseService.measure_operation("update_fee_config")
    def update_fee_config(self, changes: FeeConfigUpdate) -> FeeConfig:
        with self.transaction():
            current = self.get_fee_config()
            updated = current.model_copy(update=changes.model_dump(exclude_none=True))
            validated = FeeConfig(**updated.model_dump())
            self.repo.upsert_value(FEE_CONFIG_KEY, validated.model_dump(mode="json"))
        self.log_operation("update_fee_config", **validated.model_dump(mode="json"))
        return validated

    @BaseService.measure_operation("update_coin_config")
    def update_coin_config(self, changes: CoinConfigUpdate) -> CoinConfig:
        with self.transaction():
            current = self.get_coin_config()
            updated = current.model_copy(update=changes.model_dump(exclude_none=True))
            validated = CoinConfig(**updated.model_dump())
            self.repo.upsert_value(COIN_CONFIG_KEY, validated.model_dump(mode="json"))
        self.log_operation("update_coin_config", **validated.model_dump(mode="json"))
        return validated
