"""Registry of per-session permission providers.

Providers are keyed by (bearer token, clinic): a provider only ever
answers for the clinic it was opened for, so a request can never be
authorized against another clinic's grants. Every provider shares the
process-wide QueryCache and HTTP client; each one talks to the backend
with its session's token.

Sessions whose token expired are closed on the next lookup.
"""

import logging
import time
from dataclasses import dataclass

import httpx

from clinic_access.services.permission_api import PermissionsAPI
from clinic_access.services.provider import PermissionProvider, ProviderState
from clinic_access.utils.cache import QueryCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    """The authenticated caller and the clinic they are acting in."""
    token: str
    user_id: str
    clinic_id: int | None
    expires_at: float | None = None  # token `exp`, unix seconds


class SessionRegistry:
    def __init__(self, client: httpx.AsyncClient, cache: QueryCache):
        self.client = client
        self.cache = cache
        self._providers: dict[tuple[str, int | None], PermissionProvider] = {}
        self._expiry: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._providers)

    def api_for(self, token: str) -> PermissionsAPI:
        return PermissionsAPI(self.client, token)

    async def provider_for(self, session: SessionContext) -> PermissionProvider:
        """Return the session's provider for its active clinic, loaded.

        A provider that is idle or whose last resolve failed loads again.
        """
        self.prune()
        key = (session.token, session.clinic_id)
        provider = self._providers.get(key)
        if provider is None:
            provider = PermissionProvider(
                self.api_for(session.token), self.cache, session.user_id, session.clinic_id
            )
            self._providers[key] = provider
            if session.expires_at is not None:
                self._expiry[session.token] = session.expires_at
            logger.info(
                f"Opened permission session for user {session.user_id} "
                f"in clinic {session.clinic_id}"
            )

        if provider.state in (ProviderState.IDLE, ProviderState.ERROR):
            await provider.load()
        return provider

    def prune(self, now: float | None = None) -> int:
        """Close every session whose token has expired. Returns the count."""
        now = time.time() if now is None else now
        expired = [token for token, exp in self._expiry.items() if exp <= now]
        for token in expired:
            self.logout(token)
        if expired:
            logger.info(f"Pruned {len(expired)} expired permission sessions")
        return len(expired)

    def logout(self, token: str) -> bool:
        self._expiry.pop(token, None)
        keys = [key for key in self._providers if key[0] == token]
        for key in keys:
            provider = self._providers.pop(key)
            provider.close()
            logger.info(
                f"Closed permission session for user {provider.user_id} in clinic {key[1]}"
            )
        return bool(keys)

    def close_all(self) -> None:
        for token in {key[0] for key in self._providers}:
            self.logout(token)
