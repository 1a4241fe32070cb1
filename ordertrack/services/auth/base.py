"""
Identity Resolver Abstract Base Class

Sessions are issued elsewhere (login, cookies). The tracker only needs to
turn whatever the caller presents into an Identity, for REST calls and
once per WebSocket connection.
"""

from abc import ABC, abstractmethod
from typing import Mapping, Optional

from ordertrack.schemas import Identity


class BaseIdentityResolver(ABC):
    """Abstract base class for identity resolvers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the resolver name."""
        pass

    @abstractmethod
    def resolve(
        self,
        token: Optional[str],
        headers: Mapping[str, str],
    ) -> Optional[Identity]:
        """
        Resolve the caller's identity.

        Args:
            token: Session token from the Authorization header, cookie or
                WebSocket query string, if any
            headers: Request (or WebSocket handshake) headers

        Returns:
            Identity, or None for an anonymous caller. Invalid credentials
            resolve to None rather than raising.
        """
        pass
