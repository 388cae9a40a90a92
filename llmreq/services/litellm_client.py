"""
LiteLLM Directory Client - typed access to the upstream key-issuing proxy.

One method per upstream call. Transport failures and timeouts always surface
as UpstreamUnavailableError; each write has its own typed failure.
"""

import time
from typing import Any

import httpx
from pydantic import TypeAdapter, ValidationError
from structlog import get_logger

from llmreq.config import Settings
from llmreq.exceptions import (
    IssuanceFailedError,
    ProvisionFailedError,
    RevocationFailedError,
    UpstreamDecodeError,
    UpstreamUnavailableError,
)
from llmreq.models.domain import GeneratedKey, RemoteKey, RemoteUser
from llmreq.models.litellm import (
    LiteLLMGenerateKeyPayload,
    LiteLLMKeyListPayload,
    LiteLLMKeyPayload,
    LiteLLMUserPayload,
)
from llmreq.observability.metrics import metrics

logger = get_logger(__name__)

_KEY_LIST_ADAPTER = TypeAdapter(list[LiteLLMKeyPayload])

# Upstream bodies are echoed into logs; keep them bounded
_LOG_BODY_LIMIT = 500


class LiteLLMClient:
    """Client for the LiteLLM proxy's user and key management API."""

    def __init__(
        self,
        base_url: str,
        master_key: str = "",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.master_key = master_key
        self.timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "LiteLLMClient":
        return cls(
            base_url=settings.litellm_api_url,
            master_key=settings.litellm_master_key,
            timeout=settings.request_timeout_seconds,
            http_client=http_client,
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    def _headers(self) -> dict[str, str]:
        if self.master_key:
            return {"Authorization": f"Bearer {self.master_key}"}
        return {}

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send one request; transport errors and timeouts become UpstreamUnavailableError."""
        start_time = time.perf_counter()
        try:
            response = await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                json=json,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            metrics.record_upstream_call(operation, "timeout", time.perf_counter() - start_time)
            logger.error("litellm_timeout", operation=operation, timeout=self.timeout)
            raise UpstreamUnavailableError(operation, detail="timeout") from e
        except httpx.HTTPError as e:
            metrics.record_upstream_call(
                operation, "transport_error", time.perf_counter() - start_time
            )
            logger.error("litellm_transport_error", operation=operation, error=str(e))
            raise UpstreamUnavailableError(operation, detail=str(e)) from e

        outcome = "success" if response.is_success else f"http_{response.status_code}"
        metrics.record_upstream_call(operation, outcome, time.perf_counter() - start_time)
        return response

    def _log_failure(self, event: str, response: httpx.Response, **context: Any) -> None:
        logger.error(
            event,
            status=response.status_code,
            text=response.text[:_LOG_BODY_LIMIT],
            **context,
        )

    # ========================================================================
    # Users
    # ========================================================================

    async def lookup_user(self, user_id: str) -> RemoteUser | None:
        """
        GET /user/info/{user_id}.

        Returns:
            RemoteUser, or None if LiteLLM answers 404

        Raises:
            UpstreamUnavailableError: transport error or any other non-200
            UpstreamDecodeError: 200 with an unreadable body
        """
        response = await self._request("lookup_user", "GET", f"/user/info/{user_id}")

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            self._log_failure("user_info_fetch_failed", response, user_id=user_id)
            raise UpstreamUnavailableError("lookup_user", status_code=response.status_code)

        try:
            payload = LiteLLMUserPayload.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise UpstreamDecodeError("lookup_user", str(e)) from e
        return payload.to_domain()

    async def provision_user(self, user_id: str, email: str, default_budget: float) -> None:
        """
        POST /user/new.

        max_budget is only sent when positive.

        Raises:
            ProvisionFailedError: any non-success response
        """
        body: dict[str, Any] = {"user_id": user_id, "user_email": email}
        if default_budget > 0:
            body["max_budget"] = default_budget

        response = await self._request("provision_user", "POST", "/user/new", json=body)

        if not response.is_success:
            self._log_failure("user_create_failed", response, user_id=user_id)
            raise ProvisionFailedError(user_id, response.status_code, response.text)

        logger.info("litellm_user_created", user_id=user_id)

    # ========================================================================
    # Keys
    # ========================================================================

    async def list_keys(self, user_id: str) -> list[RemoteKey]:
        """
        GET /key/list filtered by owner.

        Accepts either {"keys": [...]} or a bare array of key objects.

        Raises:
            UpstreamUnavailableError: transport error or non-200
            UpstreamDecodeError: body is neither accepted shape
        """
        response = await self._request(
            "list_keys",
            "GET",
            "/key/list",
            params={"user_id": user_id, "return_full_object": "true"},
        )

        if response.status_code != 200:
            self._log_failure("key_list_failed", response, user_id=user_id)
            raise UpstreamUnavailableError("list_keys", status_code=response.status_code)

        return [entry.to_domain() for entry in self._decode_key_list(response)]

    @staticmethod
    def _decode_key_list(response: httpx.Response) -> list[LiteLLMKeyPayload]:
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamDecodeError("list_keys", f"invalid JSON: {e}") from e

        try:
            if isinstance(data, dict):
                return LiteLLMKeyListPayload.model_validate(data).keys
            if isinstance(data, list):
                return _KEY_LIST_ADAPTER.validate_python(data)
        except ValidationError as e:
            raise UpstreamDecodeError("list_keys", str(e)) from e

        raise UpstreamDecodeError("list_keys", f"unexpected payload type {type(data).__name__}")

    async def generate_key(
        self,
        user_id: str,
        alias: str,
        max_budget: float,
        duration: str | None,
    ) -> GeneratedKey:
        """
        POST /key/generate.

        Raises:
            IssuanceFailedError: non-success response, unreadable body, or no key
        """
        body: dict[str, Any] = {"user_id": user_id, "key_alias": alias}
        if max_budget > 0:
            body["max_budget"] = max_budget
        if duration:
            body["duration"] = duration

        response = await self._request("generate_key", "POST", "/key/generate", json=body)

        if not response.is_success:
            self._log_failure("key_generate_failed", response, user_id=user_id, alias=alias)
            raise IssuanceFailedError(response.status_code, response.text)

        try:
            payload = LiteLLMGenerateKeyPayload.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            self._log_failure(
                "key_generate_undecodable", response, user_id=user_id, alias=alias, error=str(e)
            )
            raise IssuanceFailedError(
                response.status_code, response.text[:_LOG_BODY_LIMIT]
            ) from e

        if not payload.secret:
            raise IssuanceFailedError(response.status_code, "response did not include a key")

        return payload.to_domain()

    async def delete_key(self, remote_key_id: str) -> None:
        """
        POST /key/delete.

        Raises:
            RevocationFailedError: non-success response
        """
        response = await self._request(
            "delete_key", "POST", "/key/delete", json={"keys": [remote_key_id]}
        )

        if not response.is_success:
            self._log_failure("key_delete_failed", response, remote_key_id=remote_key_id)
            raise RevocationFailedError(remote_key_id, response.status_code, response.text)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
