from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.security import token_time
from app.domain.errors import DuplicateTokenError, InvalidExpiryError, StoreUnavailableError
from app.domain.identity import Identity
from app.domain.models.issued_token import IssuedToken
from app.domain.models.revoked_token import RevocationReason, RevokedToken, TokenType
from app.domain.models.user_revocation_cutoff import UserRevocationCutoff
from app.infrastructure.observability.metrics import (
    REVOCATIONS_PURGED_TOTAL,
    measure_ledger_lookup,
    record_ledger_degraded,
    record_revocations,
)

logger = logging.getLogger(__name__)

MAX_JTI_LENGTH = 255


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class LiveToken:
    jti: str
    token_type: TokenType
    expires_at: datetime


@dataclass(frozen=True)
class RevocationMetadata:
    device_info: dict | None = None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class PurgeResult:
    revoked_tokens: int
    issued_tokens: int
    cutoffs: int


def _validate_jti(jti: str) -> str:
    if not isinstance(jti, str) or not jti.strip():
        raise ValueError("token jti must be a non-empty string")
    if len(jti) > MAX_JTI_LENGTH:
        raise ValueError(f"token jti must be at most {MAX_JTI_LENGTH} characters")
    return jti


class TokenRevocationLedger:
    """Append-only record of revoked token ids plus per-user revocation cutoffs.

    Writes commit before returning and raise on failure. Reads fail closed:
    when the store cannot answer, the token is reported as revoked.
    """

    def __init__(self, db: AsyncSession, *, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def revoke(
        self,
        *,
        jti: str,
        user_id: UUID,
        token_type: TokenType,
        expires_at: datetime,
        reason: RevocationReason,
        metadata: RevocationMetadata | None = None,
        revoked_at: datetime | None = None,
    ) -> RevokedToken:
        _validate_jti(jti)
        now = self.clock()
        # A caller-supplied future timestamp is clamped to the write time.
        effective_revoked_at = min(revoked_at or now, now)
        if expires_at < effective_revoked_at or expires_at < now:
            raise InvalidExpiryError(
                f"expires_at {expires_at.isoformat()} precedes revocation time {effective_revoked_at.isoformat()}"
            )

        metadata = metadata or RevocationMetadata()
        record = RevokedToken(
            token_jti=jti,
            user_id=user_id,
            token_type=TokenType(token_type).value,
            revoked_at=effective_revoked_at,
            expires_at=expires_at,
            reason=RevocationReason(reason).value,
            device_info=metadata.device_info,
            ip_address=metadata.ip_address,
            user_agent=metadata.user_agent,
        )
        try:
            self.db.add(record)
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            logger.error("revocation_duplicate_token jti=%s user_id=%s reason=%s", jti, user_id, reason)
            raise DuplicateTokenError(f"token {jti} is already revoked") from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            record_ledger_degraded("revoke")
            logger.exception("revocation_write_failed jti=%s user_id=%s reason=%s", jti, user_id, reason)
            raise StoreUnavailableError("revocation ledger unavailable") from exc

        record_revocations(record.reason)
        logger.info(
            "token_revoked jti=%s user_id=%s token_type=%s reason=%s",
            jti,
            user_id,
            record.token_type,
            record.reason,
        )
        return record

    async def is_revoked(self, jti: str) -> bool:
        try:
            with measure_ledger_lookup():
                row = (
                    await self.db.execute(select(RevokedToken.id).where(RevokedToken.token_jti == jti))
                ).first()
        except SQLAlchemyError:
            record_ledger_degraded("is_revoked")
            logger.warning("revocation_lookup_failed_closed jti=%s", jti, exc_info=True)
            return True
        return row is not None

    async def is_session_revoked(self, identity: Identity) -> bool:
        if await self.is_revoked(identity.jti):
            return True
        try:
            with measure_ledger_lookup():
                cutoff = (
                    await self.db.execute(
                        select(UserRevocationCutoff).where(UserRevocationCutoff.user_id == identity.user_id)
                    )
                ).scalar_one_or_none()
        except SQLAlchemyError:
            record_ledger_degraded("cutoff_lookup")
            logger.warning("revocation_cutoff_lookup_failed_closed user_id=%s", identity.user_id, exc_info=True)
            return True
        if cutoff is None:
            return False
        if identity.jti in (cutoff.exempt_jtis or []):
            return False
        return identity.issued_at < cutoff.valid_after

    async def revoke_all_for_user(
        self,
        *,
        user_id: UUID,
        reason: RevocationReason,
        exclude_jtis: Iterable[str] = (),
        candidates: Iterable[LiveToken] = (),
        metadata: RevocationMetadata | None = None,
    ) -> int:
        """Revoke every live token of ``user_id`` in one transaction.

        The user's cutoff moves to now, so tokens this ledger has never seen are
        rejected too; each known live candidate additionally gets its own record
        so point lookups by jti answer correctly. Returns the number of records
        written.
        """
        excluded = {jti for jti in exclude_jtis if jti}
        live_candidates = list(candidates)
        metadata = metadata or RevocationMetadata()
        try:
            return await self._revoke_all_once(
                user_id=user_id,
                reason=reason,
                excluded=excluded,
                candidates=live_candidates,
                metadata=metadata,
            )
        except IntegrityError:
            await self.db.rollback()
            logger.warning("revoke_all_retry_after_conflict user_id=%s reason=%s", user_id, reason)

        try:
            return await self._revoke_all_once(
                user_id=user_id,
                reason=reason,
                excluded=excluded,
                candidates=live_candidates,
                metadata=metadata,
            )
        except IntegrityError as exc:
            await self.db.rollback()
            logger.error("revoke_all_conflict user_id=%s reason=%s", user_id, reason)
            raise DuplicateTokenError(f"concurrent revocation conflict for user {user_id}") from exc

    async def _revoke_all_once(
        self,
        *,
        user_id: UUID,
        reason: RevocationReason,
        excluded: set[str],
        candidates: list[LiveToken],
        metadata: RevocationMetadata,
    ) -> int:
        now = self.clock()
        # Same precision as minted iat claims, so tokens issued later in this
        # millisecond stay valid.
        valid_after = token_time(now)
        reason_value = RevocationReason(reason).value
        live = {
            token.jti: token
            for token in candidates
            if token.jti not in excluded and token.expires_at >= now
        }
        try:
            already_recorded: set[str] = set()
            if live:
                already_recorded = set(
                    (
                        await self.db.execute(
                            select(RevokedToken.token_jti).where(RevokedToken.token_jti.in_(list(live)))
                        )
                    ).scalars()
                )

            cutoff = (
                await self.db.execute(
                    select(UserRevocationCutoff).where(UserRevocationCutoff.user_id == user_id)
                )
            ).scalar_one_or_none()
            if cutoff is None:
                self.db.add(
                    UserRevocationCutoff(
                        user_id=user_id,
                        valid_after=valid_after,
                        reason=reason_value,
                        exempt_jtis=sorted(excluded),
                        updated_at=now,
                    )
                )
            else:
                cutoff.valid_after = max(cutoff.valid_after, valid_after)
                cutoff.reason = reason_value
                cutoff.exempt_jtis = sorted(excluded)
                cutoff.updated_at = now

            written = 0
            for jti, token in live.items():
                if jti in already_recorded:
                    continue
                self.db.add(
                    RevokedToken(
                        token_jti=jti,
                        user_id=user_id,
                        token_type=TokenType(token.token_type).value,
                        revoked_at=now,
                        expires_at=token.expires_at,
                        reason=reason_value,
                        device_info=metadata.device_info,
                        ip_address=metadata.ip_address,
                        user_agent=metadata.user_agent,
                    )
                )
                written += 1
            await self.db.commit()
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            await self.db.rollback()
            record_ledger_degraded("revoke_all_for_user")
            logger.exception("revoke_all_write_failed user_id=%s reason=%s", user_id, reason_value)
            raise StoreUnavailableError("revocation ledger unavailable") from exc

        record_revocations(reason_value, written)
        logger.info(
            "user_tokens_revoked user_id=%s reason=%s records=%s excluded=%s",
            user_id,
            reason_value,
            written,
            len(excluded),
        )
        return written

    async def purge_expired(self, before: datetime) -> PurgeResult:
        cutoff_horizon = before - timedelta(seconds=settings.max_token_lifetime_seconds)
        try:
            revoked = await self.db.execute(delete(RevokedToken).where(RevokedToken.expires_at < before))
            issued = await self.db.execute(delete(IssuedToken).where(IssuedToken.expires_at < before))
            cutoffs = await self.db.execute(
                delete(UserRevocationCutoff).where(UserRevocationCutoff.valid_after < cutoff_horizon)
            )
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            record_ledger_degraded("purge_expired")
            logger.exception("revocation_purge_failed before=%s", before.isoformat())
            raise StoreUnavailableError("revocation ledger unavailable") from exc

        result = PurgeResult(
            revoked_tokens=int(revoked.rowcount or 0),
            issued_tokens=int(issued.rowcount or 0),
            cutoffs=int(cutoffs.rowcount or 0),
        )
        if result.revoked_tokens:
            REVOCATIONS_PURGED_TOTAL.inc(result.revoked_tokens)
        logger.info(
            "revocation_purge_completed before=%s revoked_tokens=%s issued_tokens=%s cutoffs=%s",
            before.isoformat(),
            result.revoked_tokens,
            result.issued_tokens,
            result.cutoffs,
        )
        return result

    async def list_revocations(self, user_id: UUID, *, limit: int | None = None) -> list[RevokedToken]:
        query = (
            select(RevokedToken)
            .where(RevokedToken.user_id == user_id)
            .order_by(RevokedToken.revoked_at.desc(), RevokedToken.created_at.desc())
            .limit(limit or settings.revocation_audit_default_limit)
        )
        try:
            return list((await self.db.execute(query)).scalars().all())
        except SQLAlchemyError as exc:
            record_ledger_degraded("list_revocations")
            raise StoreUnavailableError("revocation ledger unavailable") from exc
