"""
Account Authorization

The store hands out one account-level token per authorization, together
with the two base URLs every later call is made against (API root and
download root). The token has no client-visible expiry, so the session
is kept until a request using it comes back 401; then it is dropped and
the next operation authorizes again (lazy refresh, never proactive).
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from ..errors import AuthenticationError
from ..protocol import StoreProtocol, ProtocolTimeout, error_details
from .singleflight import SingleFlight

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    """Application key pair. Immutable for the client's lifetime."""
    key_id: str
    key: str = field(repr=False)

    def __repr__(self) -> str:
        return f"Credentials(key_id={self.key_id!r}, key='***')"


@dataclass(frozen=True)
class AuthSession:
    """Result of a successful account authorization."""
    account_id: str
    authorization_token: str = field(repr=False)
    api_url: str = ''
    download_url: str = ''

    @classmethod
    def from_dict(cls, data: dict) -> 'AuthSession':
        return cls(
            account_id=data['accountId'],
            authorization_token=data['authorizationToken'],
            api_url=data['apiUrl'],
            download_url=data['downloadUrl'],
        )


class AuthManager:
    """
    Holds at most one live AuthSession per client.

    Concurrent callers on a cold manager share a single authorization
    request.
    """

    def __init__(self, protocol: StoreProtocol, credentials: Credentials,
                 auth_url: str):
        self.protocol = protocol
        self.credentials = credentials
        self.auth_url = auth_url

        self._session: Optional[AuthSession] = None
        self._flight = SingleFlight()

        # Statistics
        self.authorizations = 0

    @property
    def session(self) -> Optional[AuthSession]:
        """The cached session, if any. Never triggers a request."""
        return self._session

    async def acquire(self) -> AuthSession:
        """Return the cached session or authorize once for all waiters."""
        if self._session is not None:
            return self._session
        return await self._flight.do('auth', self._authorize)

    def invalidate(self):
        """Drop the cached session. Idempotent."""
        if self._session is not None:
            logger.warning("Discarding auth session")
        self._session = None

    async def _authorize(self) -> AuthSession:
        self.authorizations += 1
        logger.debug(f"Authorizing key {self.credentials.key_id[:8]}...")

        try:
            response = await self.protocol.authorize(
                self.auth_url, self.credentials.key_id, self.credentials.key
            )
        except (httpx.RequestError, ProtocolTimeout) as e:
            raise AuthenticationError(f"Authorization request failed: {e}") from e

        if not response.is_success:
            code, message = error_details(response)
            raise AuthenticationError(
                f"Authorization rejected: {message}",
                status=response.status_code,
                code=code,
            )

        try:
            session = AuthSession.from_dict(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise AuthenticationError(
                f"Malformed authorization response: {e}",
                status=response.status_code,
            ) from e

        self._session = session
        logger.info(f"Authorized account {session.account_id}")
        return session
