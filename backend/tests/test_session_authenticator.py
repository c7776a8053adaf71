import asyncio
import uuid
from datetime import timedelta

import jwt
import pytest

from app.application.services.session_authenticator import SessionAuthenticator
from app.application.services.token_ledger_service import TokenRevocationLedger
from app.core.config import settings
from app.core.security import create_access_token, create_refresh_token
from app.domain.errors import AuthenticationRejected, RejectionKind
from app.domain.models.revoked_token import RevocationReason, TokenType


class SlowLedger:
    def __init__(self, delay: float):
        self.delay = delay

    async def is_session_revoked(self, identity) -> bool:
        await asyncio.sleep(self.delay)
        return False


class RecordingLedger:
    def __init__(self):
        self.calls = []

    async def is_session_revoked(self, identity) -> bool:
        self.calls.append(identity.jti)
        return False


def encode_claims(clock, **overrides) -> str:
    claims = {
        "sub": str(uuid.uuid4()),
        "role_id": str(uuid.uuid4()),
        "jti": str(uuid.uuid4()),
        "type": "access",
        "iat": clock.now,
        "exp": clock.now + timedelta(hours=1),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    claims.update(overrides)
    claims = {key: value for key, value in claims.items() if value is not None}
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@pytest.fixture
def ledger(db_session, clock) -> TokenRevocationLedger:
    return TokenRevocationLedger(db_session, clock=clock)


@pytest.fixture
def authenticator(ledger, clock) -> SessionAuthenticator:
    return SessionAuthenticator(ledger, clock=clock, lookup_timeout_seconds=1.0)


async def rejection_kind(authenticator, raw_token, **kwargs) -> RejectionKind:
    with pytest.raises(AuthenticationRejected) as exc_info:
        await authenticator.authenticate(raw_token, **kwargs)
    return exc_info.value.kind


async def test_valid_access_token_is_accepted(authenticator, clock):
    user_id, role_id = uuid.uuid4(), uuid.uuid4()
    issued = create_access_token(user_id, role_id, now=clock.now)

    identity = await authenticator.authenticate(issued.token)

    assert identity.user_id == user_id
    assert identity.role_id == role_id
    assert identity.jti == issued.jti
    assert identity.token_type == TokenType.ACCESS
    assert identity.issued_at == issued.issued_at
    assert identity.expires_at == issued.expires_at


@pytest.mark.parametrize("raw_token", ["", "not-a-jwt", "a.b.c"])
async def test_malformed_tokens_are_invalid_signature(authenticator, raw_token):
    assert await rejection_kind(authenticator, raw_token) == RejectionKind.INVALID_SIGNATURE


async def test_tampered_signature_is_rejected(authenticator, clock):
    token = create_access_token(uuid.uuid4(), uuid.uuid4(), now=clock.now).token
    head, payload, signature = token.split(".")
    tampered = f"{head}.{payload}.{signature[::-1]}"

    assert await rejection_kind(authenticator, tampered) == RejectionKind.INVALID_SIGNATURE


async def test_token_signed_with_other_key_is_rejected(authenticator, clock):
    forged = jwt.encode(
        {"sub": str(uuid.uuid4()), "type": "access"},
        "another-secret-that-is-also-long-enough",
        algorithm="HS256",
    )

    assert await rejection_kind(authenticator, forged) == RejectionKind.INVALID_SIGNATURE


async def test_wrong_audience_and_missing_claims_are_rejected(authenticator, clock):
    assert await rejection_kind(authenticator, encode_claims(clock, aud="other-app")) == RejectionKind.INVALID_SIGNATURE
    assert await rejection_kind(authenticator, encode_claims(clock, jti=None)) == RejectionKind.INVALID_SIGNATURE
    assert await rejection_kind(authenticator, encode_claims(clock, sub="not-a-uuid")) == RejectionKind.INVALID_SIGNATURE


async def test_refresh_token_is_not_an_access_token(authenticator, clock):
    refresh = create_refresh_token(uuid.uuid4(), uuid.uuid4(), now=clock.now)

    assert await rejection_kind(authenticator, refresh.token) == RejectionKind.INVALID_SIGNATURE
    identity = await authenticator.authenticate(refresh.token, expected_type=TokenType.REFRESH)
    assert identity.token_type == TokenType.REFRESH


async def test_expired_token_is_rejected_unless_allowed(authenticator, clock):
    token = create_access_token(uuid.uuid4(), uuid.uuid4(), now=clock.now).token
    clock.advance(minutes=settings.jwt_access_token_expire_minutes, seconds=1)

    assert await rejection_kind(authenticator, token) == RejectionKind.EXPIRED
    identity = await authenticator.authenticate(token, allow_expired=True)
    assert identity.expires_at < clock.now


async def test_expiry_is_checked_before_the_ledger(clock):
    ledger = RecordingLedger()
    authenticator = SessionAuthenticator(ledger, clock=clock)
    token = create_access_token(uuid.uuid4(), uuid.uuid4(), now=clock.now).token
    clock.advance(hours=1)

    assert await rejection_kind(authenticator, token) == RejectionKind.EXPIRED
    assert ledger.calls == []


async def test_revoked_token_is_rejected_before_its_exp(authenticator, ledger, clock):
    user_id = uuid.uuid4()
    token = encode_claims(clock, sub=str(user_id), jti="abc123", exp=clock.now + timedelta(seconds=3600))
    await ledger.revoke(
        jti="abc123",
        user_id=user_id,
        token_type=TokenType.ACCESS,
        expires_at=clock.now + timedelta(seconds=3600),
        reason=RevocationReason.LOGOUT,
    )

    clock.advance(seconds=10)

    assert await rejection_kind(authenticator, token) == RejectionKind.REVOKED


async def test_revoked_token_stays_revoked_when_expired_tokens_are_allowed(authenticator, ledger, clock):
    user_id = uuid.uuid4()
    issued = create_access_token(user_id, uuid.uuid4(), now=clock.now)
    await ledger.revoke(
        jti=issued.jti,
        user_id=user_id,
        token_type=TokenType.ACCESS,
        expires_at=issued.expires_at,
        reason=RevocationReason.LOGOUT,
    )

    assert await rejection_kind(authenticator, issued.token, allow_expired=True) == RejectionKind.REVOKED


async def test_slow_ledger_fails_closed(clock):
    authenticator = SessionAuthenticator(SlowLedger(delay=1.0), clock=clock, lookup_timeout_seconds=0.01)
    token = create_access_token(uuid.uuid4(), uuid.uuid4(), now=clock.now).token

    assert await rejection_kind(authenticator, token) == RejectionKind.REVOKED


async def test_unavailable_ledger_fails_closed(broken_session, clock):
    authenticator = SessionAuthenticator(TokenRevocationLedger(broken_session, clock=clock), clock=clock)
    token = create_access_token(uuid.uuid4(), uuid.uuid4(), now=clock.now).token

    assert await rejection_kind(authenticator, token) == RejectionKind.REVOKED


async def test_sub_second_issue_time_survives_the_round_trip(authenticator, clock):
    issued = create_access_token(uuid.uuid4(), uuid.uuid4(), now=clock.now + timedelta(microseconds=250_900))

    identity = await authenticator.authenticate(issued.token)

    assert issued.issued_at == clock.now + timedelta(milliseconds=250)
    assert identity.issued_at == issued.issued_at
    assert identity.expires_at == issued.expires_at
