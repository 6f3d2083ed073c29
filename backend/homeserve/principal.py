"""Authenticated actor as resolved by the AuthGateway."""

from __future__ import annotations

from dataclasses import dataclass

from .core.enums import RoleName


@dataclass(frozen=True)
class Principal:
    """An actor id and the single role its credential carries."""

    id: str
    role: RoleName

    @property
    def is_admin(self) -> bool:
        return self.role == RoleName.ADMIN

    @property
    def is_worker(self) -> bool:
        return self.role == RoleName.WORKER

    @property
    def is_customer(self) -> bool:
        return self.role == RoleName.CUSTOMER
