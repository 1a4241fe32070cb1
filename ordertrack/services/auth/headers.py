"""
Header Identity Resolver

Development resolver: trusts X-User-Id / X-User-Role / X-Restaurant-Id
headers so the whole flow can be exercised without a login service.
Never used outside ENV_MODE=development.
"""

import logging
from typing import Mapping, Optional

from pydantic import ValidationError

from ordertrack.schemas import Identity, Role
from ordertrack.services.auth.base import BaseIdentityResolver

logger = logging.getLogger(__name__)


class HeaderIdentityResolver(BaseIdentityResolver):

    USER_HEADER = "x-user-id"
    ROLE_HEADER = "x-user-role"
    RESTAURANT_HEADER = "x-restaurant-id"

    @property
    def provider_name(self) -> str:
        return "headers"

    def resolve(
        self,
        token: Optional[str],
        headers: Mapping[str, str],
    ) -> Optional[Identity]:
        user_id = headers.get(self.USER_HEADER)
        role = headers.get(self.ROLE_HEADER)
        if not user_id or not role or role == Role.SYSTEM.value:
            return None

        try:
            return Identity(
                role=role,
                user_id=user_id,
                restaurant_id=headers.get(self.RESTAURANT_HEADER) or None,
            )
        except ValidationError as e:
            logger.warning(f"Ignoring malformed identity headers: {e.errors()}")
            return None
