"""
API Routes - FastAPI endpoints for key management.

Routes only translate between HTTP and the services; every rule lives in
llmreq.services. Typed service errors are mapped to status codes here.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from llmreq.api.dependencies import (
    UserIdentity,
    get_lifecycle_policy,
    get_provisioning_gate,
    get_reconciliation_engine,
    require_provisioned_user,
)
from llmreq.config import settings
from llmreq.exceptions import (
    InvalidKeyRequestError,
    IssuanceFailedError,
    KeyManagerError,
    KeyNotFoundError,
    LimitReachedError,
    ProvisionFailedError,
    UpstreamDecodeError,
    UpstreamUnavailableError,
    UserNotFoundError,
)
from llmreq.models.api import (
    ActiveKeyResponse,
    CreateKeyRequest,
    CreateKeyResponse,
    DeleteKeyResponse,
    ErrorResponse,
    KeyHistoryItem,
    UserInfoResponse,
)
from llmreq.services.key_lifecycle import KeyLifecyclePolicy
from llmreq.services.provisioning import ProvisioningGate
from llmreq.services.reconciliation import ReconciliationEngine

router = APIRouter(prefix=settings.prefix)


def _http_error(
    error: KeyManagerError, unavailable_detail: str = "LiteLLM unavailable"
) -> HTTPException:
    """Map a typed service error to an HTTPException without leaking upstream bodies."""
    if isinstance(error, UpstreamUnavailableError):
        return HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=unavailable_detail)
    if isinstance(error, UpstreamDecodeError):
        return HTTPException(status.HTTP_502_BAD_GATEWAY, detail="Unexpected response from LiteLLM")
    if isinstance(error, IssuanceFailedError):
        return HTTPException(status.HTTP_502_BAD_GATEWAY, detail="Failed to generate key")
    if isinstance(error, ProvisionFailedError):
        return HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to provision user"
        )
    if isinstance(error, LimitReachedError):
        return HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, KeyNotFoundError):
        return HTTPException(status.HTTP_404_NOT_FOUND, detail="Key not found")
    if isinstance(error, UserNotFoundError):
        return HTTPException(status.HTTP_404_NOT_FOUND, detail="User not found")
    if isinstance(error, InvalidKeyRequestError):
        return HTTPException(status.HTTP_422_UNPROCESSABLE_CONTENT, detail=error.message)
    return HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")


@router.get("/me", response_model=UserInfoResponse, responses={404: {"model": ErrorResponse}})
async def get_me(
    user: UserIdentity = Depends(require_provisioned_user),
    gate: ProvisioningGate = Depends(get_provisioning_gate),
) -> UserInfoResponse:
    """Fetch the caller's LiteLLM user record (budget and spend)."""
    try:
        info = await gate.get_user_info(user.user_id)
    except KeyManagerError as e:
        raise _http_error(e) from e

    return UserInfoResponse(
        user_id=info.user_id,
        user_email=info.user_email,
        max_budget=info.max_budget,
        spend=info.spend,
    )


@router.get("/keys/active", response_model=list[ActiveKeyResponse])
async def get_active_keys(
    user: UserIdentity = Depends(require_provisioned_user),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> list[ActiveKeyResponse]:
    """
    List the caller's active keys.

    Runs a reconciliation pass: LiteLLM's listing is authoritative and the
    local history is brought in line with it before responding.
    """
    try:
        visible = await engine.reconcile(user.user_id)
    except KeyManagerError as e:
        raise _http_error(e, "Failed to fetch keys from LiteLLM") from e

    return [
        ActiveKeyResponse(
            key_id=key.key_id,
            name=key.name,
            mask=key.mask,
            type=key.key_type,
            created_at=key.created_at,
            spend=key.spend,
            expires_at=key.expires_at,
        )
        for key in visible
    ]


@router.get("/keys/history", response_model=list[KeyHistoryItem])
async def get_key_history(
    user: UserIdentity = Depends(require_provisioned_user),
    policy: KeyLifecyclePolicy = Depends(get_lifecycle_policy),
) -> list[KeyHistoryItem]:
    """List the caller's revoked and expired keys, newest first."""
    entries = await policy.key_history(user.user_id)
    return [
        KeyHistoryItem(
            id=entry.record_id,
            key_id=entry.key_id,
            name=entry.name,
            mask=entry.mask,
            type=entry.key_type,
            status=entry.status,
            created_at=entry.created_at,
            expires_at=entry.expires_at,
            revoked_at=entry.revoked_at,
        )
        for entry in entries
    ]


@router.post(
    "/keys",
    response_model=CreateKeyResponse,
    responses={
        400: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def create_key(
    request: CreateKeyRequest,
    user: UserIdentity = Depends(require_provisioned_user),
    policy: KeyLifecyclePolicy = Depends(get_lifecycle_policy),
) -> CreateKeyResponse:
    """
    Issue a new key.

    The budget is clamped to the type's ceiling. The plaintext key is only
    returned in this response.
    """
    try:
        issued = await policy.create_key(
            user.user_id,
            request.name,
            requested_budget=request.budget,
            key_type=request.type,
        )
    except KeyManagerError as e:
        raise _http_error(e, "Failed to fetch key count") from e

    return CreateKeyResponse(
        key=issued.secret,
        key_id=issued.identity.remote_key_id,
        mask=issued.identity.mask,
        name=issued.name,
        type=issued.key_type,
        max_budget=issued.max_budget,
        duration=issued.duration,
        expires=issued.expires_at,
        identity_confirmed=issued.identity.confirmed,
    )


@router.delete(
    "/keys/{key_id}", response_model=DeleteKeyResponse, responses={404: {"model": ErrorResponse}}
)
async def delete_key(
    key_id: str,
    user: UserIdentity = Depends(require_provisioned_user),
    policy: KeyLifecyclePolicy = Depends(get_lifecycle_policy),
) -> DeleteKeyResponse:
    """Revoke one of the caller's keys."""
    try:
        await policy.delete_key(user.user_id, key_id)
    except KeyManagerError as e:
        raise _http_error(e) from e

    return DeleteKeyResponse()
