import asyncio
import logging
from datetime import UTC, datetime, timedelta

from app.application.services.token_ledger_service import PurgeResult, TokenRevocationLedger
from app.core.config import settings
from app.domain.errors import StoreUnavailableError
from app.infrastructure.db.async_session import AsyncSessionLocal, dispose_async_engine
from workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def purge_horizon(now: datetime | None = None) -> datetime:
    now = now or datetime.now(UTC)
    return now - timedelta(seconds=settings.revocation_retention_grace_seconds)


async def _purge(before: datetime) -> PurgeResult:
    try:
        async with AsyncSessionLocal() as db:
            return await TokenRevocationLedger(db).purge_expired(before)
    finally:
        # Each task run gets its own event loop; pooled connections must not outlive it.
        await dispose_async_engine()


@celery_app.task(
    name="workers.tasks.purge_expired_revocations",
    autoretry_for=(StoreUnavailableError,),
    retry_backoff=True,
    max_retries=3,
)
def purge_expired_revocations() -> dict:
    before = purge_horizon()
    result = asyncio.run(_purge(before))
    logger.info(
        "purge_expired_revocations completed before=%s revoked_tokens=%s issued_tokens=%s cutoffs=%s",
        before.isoformat(),
        result.revoked_tokens,
        result.issued_tokens,
        result.cutoffs,
    )
    return {
        "before": before.isoformat(),
        "revoked_tokens": result.revoked_tokens,
        "issued_tokens": result.issued_tokens,
        "cutoffs": result.cutoffs,
    }
