import logging
from collections.abc import Callable
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.services.token_ledger_service import LiveToken, utcnow
from app.core.security import IssuedTokenInfo, TokenPair, create_token_pair
from app.domain.errors import StoreUnavailableError
from app.domain.models.issued_token import IssuedToken
from app.domain.models.revoked_token import TokenType

logger = logging.getLogger(__name__)


class IssuedTokenLog:
    """Log of tokens minted by this service; source of live jtis for bulk revocation."""

    def __init__(self, db: AsyncSession, *, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def _stage(self, user_id: UUID, info: IssuedTokenInfo) -> None:
        self.db.add(
            IssuedToken(
                jti=info.jti,
                user_id=user_id,
                token_type=info.token_type.value,
                issued_at=info.issued_at,
                expires_at=info.expires_at,
            )
        )

    async def issue_pair(self, *, user_id: UUID, role_id: UUID) -> TokenPair:
        pair = create_token_pair(user_id, role_id, now=self.clock())
        self._stage(user_id, pair.access)
        self._stage(user_id, pair.refresh)
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.exception("issued_token_log_write_failed user_id=%s", user_id)
            raise StoreUnavailableError("issued token log unavailable") from exc
        logger.info(
            "token_pair_issued user_id=%s access_jti=%s refresh_jti=%s",
            user_id,
            pair.access.jti,
            pair.refresh.jti,
        )
        return pair

    async def list_live(self, user_id: UUID) -> list[LiveToken]:
        now = self.clock()
        try:
            rows = (
                await self.db.execute(
                    select(IssuedToken).where(IssuedToken.user_id == user_id, IssuedToken.expires_at >= now)
                )
            ).scalars().all()
        except SQLAlchemyError as exc:
            logger.exception("issued_token_log_read_failed user_id=%s", user_id)
            raise StoreUnavailableError("issued token log unavailable") from exc
        return [
            LiveToken(jti=row.jti, token_type=TokenType(row.token_type), expires_at=row.expires_at)
            for row in rows
        ]

    async def get(self, jti: str) -> IssuedToken | None:
        try:
            return (await self.db.execute(select(IssuedToken).where(IssuedToken.jti == jti))).scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.exception("issued_token_log_read_failed jti=%s", jti)
            raise StoreUnavailableError("issued token log unavailable") from exc
