"""
Identity Resolver Factory

Returns the header-based resolver in development and the JWT resolver
everywhere else.
"""

import logging
from functools import lru_cache

from ordertrack.core.config import get_settings
from ordertrack.services.auth.base import BaseIdentityResolver
from ordertrack.services.auth.headers import HeaderIdentityResolver
from ordertrack.services.auth.tokens import JWTIdentityResolver

logger = logging.getLogger(__name__)


@lru_cache()
def get_identity_resolver() -> BaseIdentityResolver:
    """Get the configured identity resolver."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Identity Resolver: Using HeaderIdentityResolver (development mode)")
        return HeaderIdentityResolver()

    logger.info(f"Identity Resolver: Using JWTIdentityResolver ({settings.env_mode.value} mode)")
    return JWTIdentityResolver()


def reset_identity_resolver() -> None:
    """Clear the cached resolver instance."""
    get_identity_resolver.cache_clear()


__all__ = [
    "get_identity_resolver",
    "reset_identity_resolver",
    "BaseIdentityResolver",
    "HeaderIdentityResolver",
    "JWTIdentityResolver",
]
