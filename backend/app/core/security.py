from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import jwt

from app.core.config import settings
from app.domain.models.revoked_token import TokenType

REQUIRED_CLAIMS = ["sub", "role_id", "jti", "iat", "exp", "type"]


@dataclass(frozen=True)
class IssuedTokenInfo:
    token: str
    jti: str
    token_type: TokenType
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    access: IssuedTokenInfo
    refresh: IssuedTokenInfo

    @property
    def expires_in(self) -> int:
        return settings.jwt_access_token_expire_minutes * 60


def token_time(moment: datetime) -> datetime:
    """Truncate ``moment`` to the millisecond precision carried by iat/exp claims."""
    return moment.replace(microsecond=moment.microsecond // 1000 * 1000)


def claim_time(value: int | float) -> datetime:
    return datetime.fromtimestamp(round(float(value), 3), tz=UTC)


def _create_token(
    user_id: UUID,
    role_id: UUID,
    expires_minutes: int,
    token_type: TokenType,
    *,
    now: datetime | None = None,
) -> IssuedTokenInfo:
    # iat/exp are fractional NumericDates so a cutoff can split a single second.
    issued_at = token_time(now or datetime.now(UTC))
    expires_at = issued_at + timedelta(minutes=expires_minutes)
    jti = str(uuid4())
    payload = {
        "sub": str(user_id),
        "role_id": str(role_id),
        "iat": round(issued_at.timestamp(), 3),
        "exp": round(expires_at.timestamp(), 3),
        "type": token_type.value,
        "jti": jti,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    token = jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
    return IssuedTokenInfo(
        token=token,
        jti=jti,
        token_type=token_type,
        issued_at=issued_at,
        expires_at=expires_at,
    )


def create_access_token(user_id: UUID, role_id: UUID, *, now: datetime | None = None) -> IssuedTokenInfo:
    return _create_token(user_id, role_id, settings.jwt_access_token_expire_minutes, TokenType.ACCESS, now=now)


def create_refresh_token(user_id: UUID, role_id: UUID, *, now: datetime | None = None) -> IssuedTokenInfo:
    return _create_token(user_id, role_id, settings.jwt_refresh_token_expire_minutes, TokenType.REFRESH, now=now)


def create_token_pair(user_id: UUID, role_id: UUID, *, now: datetime | None = None) -> TokenPair:
    return TokenPair(
        access=create_access_token(user_id, role_id, now=now),
        refresh=create_refresh_token(user_id, role_id, now=now),
    )


def decode_token(token: str, *, verify_exp: bool = True) -> dict:
    return jwt.decode(
        token,
        settings.jwt_secret_key,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
        leeway=settings.jwt_leeway_seconds,
        options={"verify_exp": verify_exp, "verify_iat": False, "require": REQUIRED_CLAIMS},
    )
