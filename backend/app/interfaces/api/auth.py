from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from app.application.services.permission_service import PermissionResolver
from app.application.services.revocation_dispatcher import RevocationDispatcher, RevocationOutcome
from app.application.services.session_authenticator import SessionAuthenticator
from app.application.services.token_ledger_service import RevocationMetadata, TokenRevocationLedger
from app.core.security import TokenPair
from app.domain.identity import Identity
from app.domain.models.revoked_token import RevokedToken, TokenType
from app.interfaces.api.deps import (
    get_authenticator,
    get_current_identity,
    get_dispatcher,
    get_ledger,
    get_logout_identity,
    get_resolver,
    request_metadata,
)

router = APIRouter(prefix="/auth", tags=["auth"])


class RefreshRequest(BaseModel):
    refresh_token: str


def token_payload(tokens: TokenPair) -> dict:
    return {
        "access_token": tokens.access.token,
        "refresh_token": tokens.refresh.token,
        "token_type": "bearer",
        "expires_in": tokens.expires_in,
    }


def outcome_payload(outcome: RevocationOutcome) -> dict:
    payload = {
        "event": outcome.event.value,
        "revoked_count": outcome.revoked_count,
        "already_revoked": outcome.already_revoked,
    }
    if outcome.tokens is not None:
        payload["tokens"] = token_payload(outcome.tokens)
    return payload


def revocation_payload(record: RevokedToken) -> dict:
    return {
        "id": str(record.id),
        "jti": record.token_jti,
        "user_id": str(record.user_id),
        "token_type": record.token_type,
        "reason": record.reason,
        "revoked_at": record.revoked_at.isoformat(),
        "expires_at": record.expires_at.isoformat(),
        "ip_address": record.ip_address,
        "user_agent": record.user_agent,
        "device_info": record.device_info,
    }


@router.post("/refresh", status_code=status.HTTP_200_OK)
async def refresh_tokens(
    payload: RefreshRequest,
    authenticator: SessionAuthenticator = Depends(get_authenticator),
    dispatcher: RevocationDispatcher = Depends(get_dispatcher),
    metadata: RevocationMetadata = Depends(request_metadata),
) -> dict:
    identity = await authenticator.authenticate(payload.refresh_token, expected_type=TokenType.REFRESH)
    outcome = await dispatcher.on_token_refresh(identity, metadata)
    return token_payload(outcome.tokens)


@router.post("/logout", status_code=status.HTTP_200_OK)
async def logout(
    identity: Identity = Depends(get_logout_identity),
    dispatcher: RevocationDispatcher = Depends(get_dispatcher),
    metadata: RevocationMetadata = Depends(request_metadata),
) -> dict:
    outcome = await dispatcher.on_logout(identity, metadata)
    return {"message": "Logged out successfully", **outcome_payload(outcome)}


@router.post("/logout-all", status_code=status.HTTP_200_OK)
async def logout_all(
    identity: Identity = Depends(get_current_identity),
    dispatcher: RevocationDispatcher = Depends(get_dispatcher),
    metadata: RevocationMetadata = Depends(request_metadata),
) -> dict:
    outcome = await dispatcher.on_logout_all(identity.user_id, metadata)
    return {"message": "Logged out from all devices", **outcome_payload(outcome)}


@router.post("/password-change", status_code=status.HTTP_200_OK)
async def password_changed(
    identity: Identity = Depends(get_current_identity),
    dispatcher: RevocationDispatcher = Depends(get_dispatcher),
    metadata: RevocationMetadata = Depends(request_metadata),
) -> dict:
    # Credential verification belongs to the account service; this endpoint
    # is called after the new password has been stored.
    outcome = await dispatcher.on_password_change(
        user_id=identity.user_id,
        role_id=identity.role_id,
        metadata=metadata,
    )
    return outcome_payload(outcome)


@router.get("/me", status_code=status.HTTP_200_OK)
async def me(identity: Identity = Depends(get_current_identity)) -> dict:
    return {
        "user_id": str(identity.user_id),
        "role_id": str(identity.role_id),
        "jti": identity.jti,
        "issued_at": identity.issued_at.isoformat(),
        "expires_at": identity.expires_at.isoformat(),
    }


@router.get("/capabilities", status_code=status.HTTP_200_OK)
async def capabilities(
    identity: Identity = Depends(get_current_identity),
    resolver: PermissionResolver = Depends(get_resolver),
) -> dict:
    permissions = await resolver.capabilities(identity.role_id)
    return {
        "role_id": str(identity.role_id),
        "permissions": permissions,
        "resources": sorted(permissions),
    }


@router.get("/revocations", status_code=status.HTTP_200_OK)
async def my_revocations(
    limit: int | None = Query(default=None, ge=1, le=500),
    identity: Identity = Depends(get_current_identity),
    ledger: TokenRevocationLedger = Depends(get_ledger),
) -> dict:
    rows = await ledger.list_revocations(identity.user_id, limit=limit)
    return {"items": [revocation_payload(row) for row in rows]}
