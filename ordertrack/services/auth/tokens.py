"""
JWT Identity Resolver

Verifies session tokens issued by the login service. Expected claims:
    - sub (or user_id): user identifier
    - role: customer | restaurantAdmin | superadmin
    - restaurant_id: operated restaurant, for restaurant admins
"""

import logging
from typing import Mapping, Optional

import jwt
from pydantic import ValidationError

from ordertrack.core.config import get_settings
from ordertrack.schemas import Identity, Role
from ordertrack.services.auth.base import BaseIdentityResolver

logger = logging.getLogger(__name__)


class JWTIdentityResolver(BaseIdentityResolver):

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None):
        settings = get_settings()
        self._secret_key = secret_key or settings.auth_secret_key
        self._algorithm = algorithm or settings.auth_algorithm

        if not self._secret_key:
            raise ValueError(
                "AUTH_SECRET_KEY is required outside development mode. "
                "Set it in your .env file or environment variables."
            )

    @property
    def provider_name(self) -> str:
        return "jwt"

    def resolve(
        self,
        token: Optional[str],
        headers: Mapping[str, str],
    ) -> Optional[Identity]:
        if not token:
            return None

        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired session token")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected invalid session token: {e}")
            return None

        # Roles outside the user-facing set are never granted by a token
        if claims.get("role") == Role.SYSTEM.value:
            logger.warning("Rejected session token claiming the system role")
            return None

        try:
            return Identity(
                role=claims.get("role"),
                user_id=str(claims.get("sub") or claims.get("user_id") or ""),
                restaurant_id=claims.get("restaurant_id"),
            )
        except ValidationError as e:
            logger.warning(f"Session token has unusable claims: {e.errors()}")
            return None
