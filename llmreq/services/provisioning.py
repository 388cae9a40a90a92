"""
Provisioning Gate - just-in-time creation of users in LiteLLM.

Every authenticated request passes through ensure_provisioned before touching
keys. By default LiteLLM is asked on every request; a positive
LLMREQ_PROVISIONING_CACHE_TTL_SECONDS remembers users already known upstream
for that long.
"""

import time
from collections.abc import Callable

from structlog import get_logger

from llmreq.config import Settings
from llmreq.exceptions import UserNotFoundError
from llmreq.models.domain import RemoteUser
from llmreq.observability.metrics import metrics
from llmreq.services.litellm_client import LiteLLMClient

logger = get_logger(__name__)


class ProvisioningGate:
    """Ensures a user exists in LiteLLM before any key operation."""

    def __init__(
        self,
        client: LiteLLMClient,
        settings: Settings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.settings = settings
        self.clock = clock
        # user_id -> monotonic deadline until which the user counts as provisioned
        self._known_until: dict[str, float] = {}

    @property
    def cache_ttl(self) -> float:
        return self.settings.provisioning_cache_ttl_seconds

    async def ensure_provisioned(self, user_id: str) -> bool:
        """
        Create the user in LiteLLM if it does not exist yet.

        Returns:
            True if the user was created by this call

        Raises:
            UpstreamUnavailableError: the user lookup failed
            ProvisionFailedError: the user could not be created
        """
        if self._is_cached(user_id):
            return False

        created = False
        user = await self.client.lookup_user(user_id)
        if user is None:
            await self.client.provision_user(user_id, user_id, self.settings.default_budget)
            metrics.users_provisioned_total.inc()
            logger.info("user_provisioned", user_id=user_id)
            created = True

        if self.cache_ttl > 0:
            self._remember(user_id)
        return created

    def _remember(self, user_id: str) -> None:
        now = self.clock()
        # Entries stay in deadline order, so expired ones sit at the front
        for cached_id, deadline in list(self._known_until.items()):
            if deadline > now:
                break
            del self._known_until[cached_id]
        self._known_until.pop(user_id, None)
        self._known_until[user_id] = now + self.cache_ttl

    def _is_cached(self, user_id: str) -> bool:
        if self.cache_ttl <= 0:
            return False
        deadline = self._known_until.get(user_id)
        if deadline is None:
            return False
        if self.clock() >= deadline:
            del self._known_until[user_id]
            return False
        return True

    def forget(self, user_id: str) -> None:
        """Drop a cached user so the next request re-checks LiteLLM."""
        self._known_until.pop(user_id, None)

    async def get_user_info(self, user_id: str) -> RemoteUser:
        """
        Fetch the user's LiteLLM record.

        Raises:
            UserNotFoundError: LiteLLM has no such user
            UpstreamUnavailableError: the lookup failed
        """
        user = await self.client.lookup_user(user_id)
        if user is None:
            self.forget(user_id)
            raise UserNotFoundError(user_id)
        return user
