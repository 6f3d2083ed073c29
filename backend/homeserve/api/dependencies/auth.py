# backend/homeserve/api/dependencies/auth.py
"""
Authentication and authorization dependencies.

``get_current_principal`` resolves the bearer token through the
AuthGateway; ``require_role`` narrows a route to the roles allowed to call
it. Ownership checks (is this the booking's customer or worker) stay in the
services.
"""

import logging
from typing import Callable, Optional

from fastapi import Depends

from ...auth import JwtAuthGateway, oauth2_scheme
from ...core.enums import RoleName
from ...core.exceptions import DomainException, ForbiddenException
from ...principal import Principal

logger = logging.getLogger(__name__)


def get_auth_gateway() -> JwtAuthGateway:
    return JwtAuthGateway()


async def get_current_principal(
    token: Optional[str] = Depends(oauth2_scheme),
    gateway: JwtAuthGateway = Depends(get_auth_gateway),
) -> Principal:
    try:
        return gateway.resolve(token)
    except DomainException as e:
        raise e.to_http_exception()


def require_role(*roles: RoleName) -> Callable[..., Principal]:
    """Dependency factory admitting only principals with one of ``roles``."""
    allowed = frozenset(roles)

    async def _dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            logger.warning(
                "Role check failed",
                extra={"principal_id": principal.id, "role": principal.role.value},
            )
            raise ForbiddenException(
                "Not authorized to perform this action", code="ROLE_FORBIDDEN"
            ).to_http_exception()
        return principal

    return _dependency


require_customer = require_role(RoleName.CUSTOMER)
require_worker = require_role(RoleName.WORKER)
require_admin = require_role(RoleName.ADMIN)
