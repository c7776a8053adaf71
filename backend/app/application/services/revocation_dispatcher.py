import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from app.application.services.issued_token_service import IssuedTokenLog
from app.application.services.permission_service import PermissionResolver
from app.application.services.token_ledger_service import RevocationMetadata, TokenRevocationLedger, utcnow
from app.core.config import settings
from app.core.security import TokenPair
from app.domain.errors import (
    AuthenticationRejected,
    DuplicateTokenError,
    PermissionDeniedError,
    RejectionKind,
    TokenNotFoundError,
)
from app.domain.identity import Identity
from app.domain.models.permission import Action, Resource
from app.domain.models.revoked_token import RevocationReason, TokenType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RevocationOutcome:
    event: RevocationReason
    revoked_count: int = 0
    already_revoked: bool = False
    tokens: TokenPair | None = None


class RevocationDispatcher:
    """Maps account events onto ledger writes.

    Each handler returns only after its writes are committed. Duplicate
    revocations are turned into success here for the user-initiated events;
    refresh-token reuse is the one place a duplicate is reported back as a
    rejection.
    """

    def __init__(
        self,
        ledger: TokenRevocationLedger,
        issued_log: IssuedTokenLog,
        resolver: PermissionResolver,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.issued_log = issued_log
        self.resolver = resolver
        self.clock = clock

    def _recordable_expiry(self, expires_at: datetime) -> datetime | None:
        """Expiry to store for a token, or None once no authenticator would accept it.

        Tokens past ``exp`` but inside the leeway window are still honored, so
        their record must outlive that window.
        """
        now = self.clock()
        if expires_at + timedelta(seconds=settings.jwt_leeway_seconds) < now:
            return None
        return max(expires_at, now)

    async def _revoke_one(
        self,
        *,
        event: RevocationReason,
        jti: str,
        user_id: UUID,
        token_type: TokenType,
        expires_at: datetime,
        metadata: RevocationMetadata | None,
    ) -> RevocationOutcome:
        recorded_expiry = self._recordable_expiry(expires_at)
        if recorded_expiry is None:
            logger.info("revocation_skipped_expired_token event=%s jti=%s", event.value, jti)
            return RevocationOutcome(event=event)
        try:
            await self.ledger.revoke(
                jti=jti,
                user_id=user_id,
                token_type=token_type,
                expires_at=recorded_expiry,
                reason=event,
                metadata=metadata,
            )
        except DuplicateTokenError:
            logger.info("revocation_already_recorded event=%s jti=%s", event.value, jti)
            return RevocationOutcome(event=event, already_revoked=True)
        return RevocationOutcome(event=event, revoked_count=1)

    async def _revoke_all(
        self,
        *,
        event: RevocationReason,
        user_id: UUID,
        exclude_jtis: tuple[str, ...] = (),
        metadata: RevocationMetadata | None,
    ) -> int:
        candidates = await self.issued_log.list_live(user_id)
        return await self.ledger.revoke_all_for_user(
            user_id=user_id,
            reason=event,
            exclude_jtis=exclude_jtis,
            candidates=candidates,
            metadata=metadata,
        )

    async def on_logout(self, identity: Identity, metadata: RevocationMetadata | None = None) -> RevocationOutcome:
        return await self._revoke_one(
            event=RevocationReason.LOGOUT,
            jti=identity.jti,
            user_id=identity.user_id,
            token_type=identity.token_type,
            expires_at=identity.expires_at,
            metadata=metadata,
        )

    async def on_logout_all(self, user_id: UUID, metadata: RevocationMetadata | None = None) -> RevocationOutcome:
        count = await self._revoke_all(event=RevocationReason.LOGOUT_ALL, user_id=user_id, metadata=metadata)
        return RevocationOutcome(event=RevocationReason.LOGOUT_ALL, revoked_count=count)

    async def on_password_change(
        self,
        *,
        user_id: UUID,
        role_id: UUID,
        metadata: RevocationMetadata | None = None,
    ) -> RevocationOutcome:
        tokens = await self.issued_log.issue_pair(user_id=user_id, role_id=role_id)
        count = await self._revoke_all(
            event=RevocationReason.PASSWORD_CHANGE,
            user_id=user_id,
            exclude_jtis=(tokens.access.jti, tokens.refresh.jti),
            metadata=metadata,
        )
        return RevocationOutcome(event=RevocationReason.PASSWORD_CHANGE, revoked_count=count, tokens=tokens)

    async def on_security_breach(
        self,
        user_id: UUID,
        metadata: RevocationMetadata | None = None,
    ) -> RevocationOutcome:
        count = await self._revoke_all(event=RevocationReason.SECURITY_BREACH, user_id=user_id, metadata=metadata)
        logger.warning("security_breach_revocation user_id=%s records=%s", user_id, count)
        return RevocationOutcome(event=RevocationReason.SECURITY_BREACH, revoked_count=count)

    async def require_user_admin(self, actor: Identity) -> None:
        if not await self.resolver.authorize(actor, Resource.USERS, Action.EDIT):
            raise PermissionDeniedError("users:edit permission required")

    async def on_admin_revoke(
        self,
        actor: Identity,
        *,
        jti: str,
        user_id: UUID | None = None,
        token_type: TokenType | None = None,
        expires_at: datetime | None = None,
        metadata: RevocationMetadata | None = None,
    ) -> RevocationOutcome:
        await self.require_user_admin(actor)
        if user_id is None or token_type is None or expires_at is None:
            issued = await self.issued_log.get(jti)
            if issued is None:
                raise TokenNotFoundError(f"token {jti} is unknown; user_id, token_type and expires_at are required")
            user_id = issued.user_id
            token_type = TokenType(issued.token_type)
            expires_at = issued.expires_at
        elif expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        outcome = await self._revoke_one(
            event=RevocationReason.ADMIN_REVOKE,
            jti=jti,
            user_id=user_id,
            token_type=token_type,
            expires_at=expires_at,
            metadata=metadata,
        )
        logger.info("admin_token_revoke actor=%s target_user_id=%s jti=%s", actor.user_id, user_id, jti)
        return outcome

    async def on_token_refresh(
        self,
        identity: Identity,
        metadata: RevocationMetadata | None = None,
    ) -> RevocationOutcome:
        if identity.token_type != TokenType.REFRESH:
            raise AuthenticationRejected(RejectionKind.INVALID_SIGNATURE, "expected refresh token")
        recorded_expiry = self._recordable_expiry(identity.expires_at)
        if recorded_expiry is None:
            raise AuthenticationRejected(RejectionKind.EXPIRED, "refresh token expired")
        try:
            await self.ledger.revoke(
                jti=identity.jti,
                user_id=identity.user_id,
                token_type=TokenType.REFRESH,
                expires_at=recorded_expiry,
                reason=RevocationReason.TOKEN_REFRESH,
                metadata=metadata,
            )
        except DuplicateTokenError as exc:
            logger.warning("refresh_token_reuse user_id=%s jti=%s", identity.user_id, identity.jti)
            raise AuthenticationRejected(RejectionKind.REVOKED, "refresh token already used") from exc
        tokens = await self.issued_log.issue_pair(user_id=identity.user_id, role_id=identity.role_id)
        return RevocationOutcome(event=RevocationReason.TOKEN_REFRESH, revoked_count=1, tokens=tokens)
