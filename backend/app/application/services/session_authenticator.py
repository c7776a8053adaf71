from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from typing import NoReturn
from uuid import UUID

import jwt

from app.application.services.token_ledger_service import TokenRevocationLedger, utcnow
from app.core.config import settings
from app.core.security import claim_time, decode_token
from app.domain.errors import AuthenticationRejected, RejectionKind
from app.domain.identity import Identity
from app.domain.models.revoked_token import TokenType
from app.infrastructure.observability.metrics import record_auth_decision, record_ledger_degraded

logger = logging.getLogger(__name__)


class AuthState(StrEnum):
    RECEIVED = "received"
    SIGNATURE_CHECKED = "signature_checked"
    EXPIRY_CHECKED = "expiry_checked"
    REVOCATION_CHECKED = "revocation_checked"
    ACCEPTED = "accepted"


def _claims_to_identity(claims: dict) -> Identity:
    try:
        return Identity(
            user_id=UUID(str(claims["sub"])),
            role_id=UUID(str(claims["role_id"])),
            jti=str(claims["jti"]),
            token_type=TokenType(claims["type"]),
            issued_at=claim_time(claims["iat"]),
            expires_at=claim_time(claims["exp"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise AuthenticationRejected(RejectionKind.INVALID_SIGNATURE, "token payload is malformed") from exc


class SessionAuthenticator:
    """Per-request pipeline: signature, expiry, then the revocation ledger.

    Stateless across requests; every call walks the states in order and stops
    at the first rejection. Expiry is checked before the ledger because it
    needs no I/O.
    """

    def __init__(
        self,
        ledger: TokenRevocationLedger,
        *,
        clock: Callable[[], datetime] = utcnow,
        lookup_timeout_seconds: float | None = None,
    ):
        self.ledger = ledger
        self.clock = clock
        self.lookup_timeout_seconds = (
            settings.ledger_lookup_timeout_seconds if lookup_timeout_seconds is None else lookup_timeout_seconds
        )

    def _reject(self, kind: RejectionKind, state: AuthState, detail: str, jti: str | None = None) -> NoReturn:
        record_auth_decision(kind.value)
        logger.info("authentication_rejected kind=%s state=%s jti=%s detail=%s", kind.value, state.value, jti, detail)
        raise AuthenticationRejected(kind, detail)

    def verify_signature(self, raw_token: str, expected_type: TokenType | None) -> Identity:
        if not raw_token or not isinstance(raw_token, str):
            self._reject(RejectionKind.INVALID_SIGNATURE, AuthState.RECEIVED, "missing bearer token")
        try:
            claims = decode_token(raw_token, verify_exp=False)
        except jwt.PyJWTError as exc:
            self._reject(RejectionKind.INVALID_SIGNATURE, AuthState.RECEIVED, type(exc).__name__)
        try:
            identity = _claims_to_identity(claims)
        except AuthenticationRejected as exc:
            self._reject(exc.kind, AuthState.RECEIVED, exc.detail or "malformed")
        if expected_type is not None and identity.token_type != expected_type:
            self._reject(
                RejectionKind.INVALID_SIGNATURE,
                AuthState.RECEIVED,
                f"expected {expected_type.value} token",
                identity.jti,
            )
        return identity

    def check_expiry(self, identity: Identity) -> None:
        leeway = settings.jwt_leeway_seconds
        if self.clock().timestamp() > identity.expires_at.timestamp() + leeway:
            self._reject(RejectionKind.EXPIRED, AuthState.SIGNATURE_CHECKED, "token expired", identity.jti)

    async def check_revocation(self, identity: Identity) -> None:
        try:
            revoked = await asyncio.wait_for(
                self.ledger.is_session_revoked(identity),
                timeout=self.lookup_timeout_seconds,
            )
        except asyncio.TimeoutError:
            record_ledger_degraded("lookup_timeout")
            logger.warning(
                "revocation_lookup_timeout_failed_closed jti=%s timeout=%s",
                identity.jti,
                self.lookup_timeout_seconds,
            )
            revoked = True
        if revoked:
            self._reject(RejectionKind.REVOKED, AuthState.EXPIRY_CHECKED, "token revoked", identity.jti)

    async def authenticate(
        self,
        raw_token: str,
        *,
        expected_type: TokenType | None = TokenType.ACCESS,
        allow_expired: bool = False,
    ) -> Identity:
        identity = self.verify_signature(raw_token, expected_type)
        if not allow_expired:
            self.check_expiry(identity)
        await self.check_revocation(identity)
        record_auth_decision(AuthState.ACCEPTED.value)
        return identity
