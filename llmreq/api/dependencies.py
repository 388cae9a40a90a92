"""
FastAPI Dependencies - identity extraction, provisioning and service wiring.

Identity is trusted from the X-Forwarded-Email header set by the
authenticating reverse proxy in front of this service.
"""

from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from llmreq.config import Settings, get_settings
from llmreq.db.session import get_db
from llmreq.exceptions import ProvisionFailedError, UpstreamDecodeError, UpstreamUnavailableError
from llmreq.services.key_lifecycle import KeyLifecyclePolicy
from llmreq.services.key_store import SQLAlchemyKeyStore
from llmreq.services.litellm_client import LiteLLMClient
from llmreq.services.provisioning import ProvisioningGate
from llmreq.services.reconciliation import ReconciliationEngine
from llmreq.services.user_locks import user_locks

logger = get_logger(__name__)


@dataclass(frozen=True)
class UserIdentity:
    """Authenticated caller, normalized from the forwarded email."""

    user_id: str
    email: str


# Process-wide upstream client and gate (the gate may hold a provisioning cache)
_litellm_client: LiteLLMClient | None = None
_provisioning_gate: ProvisioningGate | None = None


def get_litellm_client() -> LiteLLMClient:
    """Get or create the shared LiteLLM client."""
    global _litellm_client
    if _litellm_client is None:
        _litellm_client = LiteLLMClient.from_settings(get_settings())
    return _litellm_client


def get_provisioning_gate() -> ProvisioningGate:
    """Get or create the shared provisioning gate."""
    global _provisioning_gate
    if _provisioning_gate is None:
        _provisioning_gate = ProvisioningGate(get_litellm_client(), get_settings())
    return _provisioning_gate


async def close_litellm_client() -> None:
    """Close the shared LiteLLM client (for graceful shutdown)."""
    global _litellm_client, _provisioning_gate
    if _litellm_client is not None:
        await _litellm_client.close()
    _litellm_client = None
    _provisioning_gate = None


async def get_current_user(
    x_forwarded_email: str | None = Header(None, alias="X-Forwarded-Email"),
) -> UserIdentity:
    """
    Extract the caller from X-Forwarded-Email.

    Raises:
        HTTPException 401 if the header is missing or blank
    """
    if not x_forwarded_email or not x_forwarded_email.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Missing X-Forwarded-Email header",
        )
    email = x_forwarded_email.strip()
    return UserIdentity(user_id=email.lower(), email=email)


async def require_provisioned_user(
    user: UserIdentity = Depends(get_current_user),
    gate: ProvisioningGate = Depends(get_provisioning_gate),
) -> UserIdentity:
    """
    Authenticated caller that is guaranteed to exist in LiteLLM.

    Raises:
        HTTPException 503 if LiteLLM cannot be asked
        HTTPException 500 if the user could not be created
    """
    try:
        await gate.ensure_provisioned(user.user_id)
    except (UpstreamUnavailableError, UpstreamDecodeError) as e:
        logger.error("user_info_check_failed", user_id=user.user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="LiteLLM service unavailable",
        ) from e
    except ProvisionFailedError as e:
        logger.error("user_provision_failed", user_id=user.user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to provision user",
        ) from e
    return user


def get_key_store(db: AsyncSession = Depends(get_db)) -> SQLAlchemyKeyStore:
    return SQLAlchemyKeyStore(db)


def get_reconciliation_engine(
    client: LiteLLMClient = Depends(get_litellm_client),
    store: SQLAlchemyKeyStore = Depends(get_key_store),
) -> ReconciliationEngine:
    return ReconciliationEngine(client, store, locks=user_locks)


def get_lifecycle_policy(
    client: LiteLLMClient = Depends(get_litellm_client),
    store: SQLAlchemyKeyStore = Depends(get_key_store),
    settings: Settings = Depends(get_settings),
) -> KeyLifecyclePolicy:
    return KeyLifecyclePolicy(client, store, settings, locks=user_locks)
