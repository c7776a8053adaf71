from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from app.application.services.revocation_dispatcher import RevocationDispatcher
from app.application.services.token_ledger_service import RevocationMetadata, TokenRevocationLedger
from app.domain.identity import Identity
from app.domain.models.permission import Action, Resource
from app.domain.models.revoked_token import TokenType
from app.interfaces.api.auth import outcome_payload, revocation_payload
from app.interfaces.api.deps import (
    get_current_identity,
    get_dispatcher,
    get_ledger,
    request_metadata,
    require_permission,
)

router = APIRouter(prefix="/admin", tags=["admin"])


class AdminRevokeRequest(BaseModel):
    jti: str = Field(min_length=1, max_length=255)
    user_id: UUID | None = None
    token_type: TokenType | None = None
    expires_at: datetime | None = None


@router.post("/tokens/revoke", status_code=status.HTTP_200_OK)
async def admin_revoke_token(
    payload: AdminRevokeRequest,
    actor: Identity = Depends(get_current_identity),
    dispatcher: RevocationDispatcher = Depends(get_dispatcher),
    metadata: RevocationMetadata = Depends(request_metadata),
) -> dict:
    outcome = await dispatcher.on_admin_revoke(
        actor,
        jti=payload.jti,
        user_id=payload.user_id,
        token_type=payload.token_type,
        expires_at=payload.expires_at,
        metadata=metadata,
    )
    return outcome_payload(outcome)


@router.post("/users/{user_id}/security-breach", status_code=status.HTTP_200_OK)
async def security_breach(
    user_id: UUID,
    actor: Identity = Depends(require_permission(Resource.USERS, Action.EDIT)),
    dispatcher: RevocationDispatcher = Depends(get_dispatcher),
    metadata: RevocationMetadata = Depends(request_metadata),
) -> dict:
    outcome = await dispatcher.on_security_breach(user_id, metadata)
    return outcome_payload(outcome)


@router.get("/users/{user_id}/revocations", status_code=status.HTTP_200_OK)
async def user_revocations(
    user_id: UUID,
    limit: int | None = Query(default=None, ge=1, le=500),
    actor: Identity = Depends(require_permission(Resource.USERS, Action.VIEW)),
    ledger: TokenRevocationLedger = Depends(get_ledger),
) -> dict:
    rows = await ledger.list_revocations(user_id, limit=limit)
    return {"items": [revocation_payload(row) for row in rows]}
