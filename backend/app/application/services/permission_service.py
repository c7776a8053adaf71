from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from time import monotonic
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.domain.errors import StoreUnavailableError
from app.domain.identity import Identity
from app.domain.models.permission import Action, PermissionEntry, Resource
from app.infrastructure.observability.metrics import measure_redis, record_ledger_degraded, record_permission_check

logger = logging.getLogger(__name__)

RuleKey = tuple[str, str]


@dataclass
class PermissionSnapshot:
    rules: dict[str, dict[RuleKey, bool]] = field(default_factory=dict)
    loaded_at: float = 0.0

    @classmethod
    def from_rows(cls, rows, loaded_at: float) -> "PermissionSnapshot":
        rules: dict[str, dict[RuleKey, bool]] = {}
        for role_id, resource, action, allowed in rows:
            role_rules = rules.setdefault(str(role_id), {})
            key = (str(resource), str(action))
            # Conflicting rows collapse to the most restrictive answer.
            role_rules[key] = role_rules.get(key, True) and bool(allowed)
        return cls(rules=rules, loaded_at=loaded_at)

    def to_json(self) -> str:
        payload = {
            role_id: [[resource, action, allowed] for (resource, action), allowed in role_rules.items()]
            for role_id, role_rules in self.rules.items()
        }
        return json.dumps(payload)

    @classmethod
    def from_json(cls, raw: str, loaded_at: float) -> "PermissionSnapshot":
        payload = json.loads(raw)
        rows = [
            (role_id, resource, action, allowed)
            for role_id, items in payload.items()
            for resource, action, allowed in items
        ]
        return cls.from_rows(rows, loaded_at)

    def lookup(self, role_id: UUID | str, resource: str, action: str) -> bool:
        return self.rules.get(str(role_id), {}).get((resource, action), False)


class PermissionStore:
    """Read-mostly (role, resource, action) matrix cached per process.

    A snapshot lives for ``ttl_seconds``; that is the bound on how long a
    permission change made on another instance can go unseen here. When a
    Redis client is configured the snapshot is also shared between instances
    under ``settings.permission_cache_redis_key``.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float | None = None,
        redis_client: Redis | None = None,
        clock: Callable[[], float] = monotonic,
    ):
        self.ttl_seconds = settings.permission_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.redis = redis_client
        self.clock = clock
        self._snapshot: PermissionSnapshot | None = None
        self._lock = asyncio.Lock()

    def _is_fresh(self, snapshot: PermissionSnapshot | None) -> bool:
        return snapshot is not None and (self.clock() - snapshot.loaded_at) < self.ttl_seconds

    async def _read_shared(self) -> PermissionSnapshot | None:
        if self.redis is None:
            return None
        try:
            with measure_redis("permission_snapshot_get"):
                raw = await self.redis.get(settings.permission_cache_redis_key)
            if raw:
                return PermissionSnapshot.from_json(raw, self.clock())
        except (RedisError, OSError, json.JSONDecodeError, ValueError):
            logger.warning("permission_snapshot_cache_read_failed", exc_info=True)
        return None

    async def _write_shared(self, snapshot: PermissionSnapshot) -> None:
        if self.redis is None:
            return
        try:
            with measure_redis("permission_snapshot_set"):
                await self.redis.set(
                    settings.permission_cache_redis_key,
                    snapshot.to_json(),
                    ex=max(1, int(self.ttl_seconds)),
                )
        except (RedisError, OSError):
            logger.warning("permission_snapshot_cache_write_failed", exc_info=True)

    async def _load_from_db(self, db: AsyncSession) -> PermissionSnapshot:
        try:
            rows = (
                await db.execute(
                    select(
                        PermissionEntry.role_id,
                        PermissionEntry.resource,
                        PermissionEntry.action,
                        PermissionEntry.allowed,
                    )
                )
            ).all()
        except SQLAlchemyError as exc:
            record_ledger_degraded("permission_snapshot")
            logger.error("permission_snapshot_load_failed", exc_info=True)
            raise StoreUnavailableError("permission store unavailable") from exc
        return PermissionSnapshot.from_rows(rows, self.clock())

    async def snapshot(self, db: AsyncSession) -> PermissionSnapshot:
        current = self._snapshot
        if self._is_fresh(current):
            return current
        async with self._lock:
            if self._is_fresh(self._snapshot):
                return self._snapshot
            snapshot = await self._read_shared()
            if snapshot is None:
                snapshot = await self._load_from_db(db)
                await self._write_shared(snapshot)
            self._snapshot = snapshot
            logger.debug("permission_snapshot_loaded roles=%s", len(snapshot.rules))
            return snapshot

    async def invalidate(self) -> None:
        self._snapshot = None
        if self.redis is None:
            return
        try:
            with measure_redis("permission_snapshot_delete"):
                await self.redis.delete(settings.permission_cache_redis_key)
        except (RedisError, OSError):
            logger.warning("permission_snapshot_cache_invalidate_failed", exc_info=True)


def _coerce(resource: Resource | str, action: Action | str) -> tuple[Resource, Action] | None:
    try:
        return Resource(resource), Action(action)
    except ValueError:
        return None


class PermissionResolver:
    def __init__(self, store: PermissionStore, db: AsyncSession):
        self.store = store
        self.db = db

    async def is_allowed(self, role_id: UUID, resource: Resource | str, action: Action | str) -> bool:
        pair = _coerce(resource, action)
        if pair is None:
            record_permission_check(False)
            return False
        snapshot = await self.store.snapshot(self.db)
        allowed = snapshot.lookup(role_id, pair[0].value, pair[1].value)
        record_permission_check(allowed)
        return allowed

    async def authorize(self, identity: Identity, resource: Resource | str, action: Action | str) -> bool:
        allowed = await self.is_allowed(identity.role_id, resource, action)
        if not allowed:
            logger.info(
                "permission_denied user_id=%s role_id=%s resource=%s action=%s",
                identity.user_id,
                identity.role_id,
                resource,
                action,
            )
        return allowed

    async def allowed_actions(self, role_id: UUID, resource: Resource | str) -> set[Action]:
        try:
            resource = Resource(resource)
        except ValueError:
            return set()
        snapshot = await self.store.snapshot(self.db)
        return {action for action in Action if snapshot.lookup(role_id, resource.value, action.value)}

    async def capabilities(self, role_id: UUID) -> dict[str, list[str]]:
        snapshot = await self.store.snapshot(self.db)
        result: dict[str, list[str]] = {}
        for resource in Resource:
            actions = [action.value for action in Action if snapshot.lookup(role_id, resource.value, action.value)]
            if actions:
                result[resource.value] = actions
        return result
