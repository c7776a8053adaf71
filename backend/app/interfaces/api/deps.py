from functools import lru_cache

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.services.issued_token_service import IssuedTokenLog
from app.application.services.permission_service import PermissionResolver, PermissionStore
from app.application.services.revocation_dispatcher import RevocationDispatcher
from app.application.services.role_service import RoleRegistry
from app.application.services.session_authenticator import SessionAuthenticator
from app.application.services.token_ledger_service import RevocationMetadata, TokenRevocationLedger
from app.core.config import settings
from app.domain.errors import AuthenticationRejected, PermissionDeniedError, RejectionKind
from app.domain.identity import Identity
from app.domain.models.permission import Action, Resource
from app.domain.models.revoked_token import TokenType
from app.infrastructure.cache.redis_client import get_async_redis_client
from app.infrastructure.db.async_session import get_async_db
from app.infrastructure.logging.context import set_user_id

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache
def get_permission_store() -> PermissionStore:
    redis_client = get_async_redis_client() if settings.permission_cache_redis_enabled else None
    return PermissionStore(redis_client=redis_client)


def get_ledger(db: AsyncSession = Depends(get_async_db)) -> TokenRevocationLedger:
    return TokenRevocationLedger(db)


def get_issued_token_log(db: AsyncSession = Depends(get_async_db)) -> IssuedTokenLog:
    return IssuedTokenLog(db)


def get_authenticator(ledger: TokenRevocationLedger = Depends(get_ledger)) -> SessionAuthenticator:
    return SessionAuthenticator(ledger)


def get_resolver(
    db: AsyncSession = Depends(get_async_db),
    store: PermissionStore = Depends(get_permission_store),
) -> PermissionResolver:
    return PermissionResolver(store, db)


def get_role_registry(
    db: AsyncSession = Depends(get_async_db),
    store: PermissionStore = Depends(get_permission_store),
) -> RoleRegistry:
    return RoleRegistry(db, store)


def get_dispatcher(
    ledger: TokenRevocationLedger = Depends(get_ledger),
    issued_log: IssuedTokenLog = Depends(get_issued_token_log),
    resolver: PermissionResolver = Depends(get_resolver),
) -> RevocationDispatcher:
    return RevocationDispatcher(ledger, issued_log, resolver)


def request_metadata(request: Request) -> RevocationMetadata:
    client_host = request.client.host if request.client else None
    return RevocationMetadata(
        device_info={"platform": request.headers.get("X-Device-Platform")} if request.headers.get("X-Device-Platform") else None,
        ip_address=request.headers.get("X-Forwarded-For", client_host or "").split(",")[0].strip() or None,
        user_agent=request.headers.get("User-Agent"),
    )


def _bearer_token(credentials: HTTPAuthorizationCredentials | None) -> str:
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise AuthenticationRejected(RejectionKind.INVALID_SIGNATURE, "missing bearer token")
    return credentials.credentials


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    authenticator: SessionAuthenticator = Depends(get_authenticator),
) -> Identity:
    identity = await authenticator.authenticate(_bearer_token(credentials))
    set_user_id(str(identity.user_id))
    return identity


async def get_logout_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    authenticator: SessionAuthenticator = Depends(get_authenticator),
) -> Identity:
    # Logout accepts an access token that has already expired.
    identity = await authenticator.authenticate(
        _bearer_token(credentials),
        expected_type=TokenType.ACCESS,
        allow_expired=True,
    )
    set_user_id(str(identity.user_id))
    return identity


def require_permission(resource: Resource, action: Action):
    async def _dependency(
        identity: Identity = Depends(get_current_identity),
        resolver: PermissionResolver = Depends(get_resolver),
    ) -> Identity:
        if not await resolver.authorize(identity, resource, action):
            raise PermissionDeniedError(f"{resource.value}:{action.value} permission required")
        return identity

    return _dependency
