import json
import uuid

import pytest
from prometheus_client import REGISTRY
from redis.exceptions import ConnectionError as RedisConnectionError

from app.application.services.permission_service import PermissionResolver, PermissionSnapshot, PermissionStore
from app.application.services.role_service import PermissionRule, RoleRegistry
from app.domain.errors import StoreUnavailableError
from app.domain.identity import Identity
from app.domain.models.permission import Action, PermissionEntry, Resource
from app.domain.models.role import Role
from app.domain.models.revoked_token import TokenType


class TickingClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    def __init__(self):
        self.values: dict[str, str] = {}

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        self.values[key] = value

    async def delete(self, key):
        self.values.pop(key, None)


class DownRedis:
    async def get(self, key):
        raise RedisConnectionError("redis down")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("redis down")

    async def delete(self, key):
        raise RedisConnectionError("redis down")


async def create_role(db_session, name, rules):
    role = Role(name=name)
    role.permissions = [
        PermissionEntry(resource=resource.value, action=action.value, allowed=allowed)
        for resource, action, allowed in rules
    ]
    db_session.add(role)
    await db_session.commit()
    return role


@pytest.fixture
def resolver(db_session, permission_store) -> PermissionResolver:
    return PermissionResolver(permission_store, db_session)


async def test_salon_role_scenario(db_session, resolver):
    salon = await create_role(db_session, "salon", [(Resource.APPOINTMENTS, Action.DELETE, True)])

    assert await resolver.is_allowed(salon.id, "appointments", "delete") is True
    assert await resolver.is_allowed(salon.id, "users", "delete") is False


async def test_missing_entries_and_unknown_roles_are_denied(db_session, resolver):
    role = await create_role(db_session, "viewer", [(Resource.REPORTS, Action.VIEW, True)])

    assert await resolver.is_allowed(role.id, Resource.REPORTS, Action.VIEW) is True
    assert await resolver.is_allowed(role.id, Resource.REPORTS, Action.EDIT) is False
    assert await resolver.is_allowed(uuid.uuid4(), Resource.REPORTS, Action.VIEW) is False


async def test_explicit_deny_rows_are_denied(db_session, resolver):
    role = await create_role(db_session, "support-only", [(Resource.SUPPORT, Action.EDIT, False)])

    assert await resolver.is_allowed(role.id, Resource.SUPPORT, Action.EDIT) is False


@pytest.mark.parametrize(
    ("resource", "action"),
    [("payroll", "view"), ("users", "approve"), ("", ""), ("USERS", "VIEW")],
)
async def test_unknown_resource_or_action_strings_are_denied(db_session, resolver, resource, action):
    role = await create_role(db_session, "everything", [(item, Action.VIEW, True) for item in Resource])

    assert await resolver.is_allowed(role.id, resource, action) is False


async def test_allowed_actions_and_capabilities(db_session, resolver):
    role = await create_role(
        db_session,
        "receptionist",
        [
            (Resource.APPOINTMENTS, Action.VIEW, True),
            (Resource.APPOINTMENTS, Action.ADD, True),
            (Resource.APPOINTMENTS, Action.DELETE, False),
            (Resource.REVIEWS, Action.VIEW, True),
        ],
    )

    assert await resolver.allowed_actions(role.id, Resource.APPOINTMENTS) == {Action.VIEW, Action.ADD}
    assert await resolver.allowed_actions(role.id, "payroll") == set()
    assert await resolver.capabilities(role.id) == {
        "appointments": ["view", "add"],
        "reviews": ["view"],
    }


async def test_authorize_uses_the_identity_role(db_session, resolver):
    role = await create_role(db_session, "editor", [(Resource.SERVICES, Action.EDIT, True)])
    identity = Identity(
        user_id=uuid.uuid4(),
        role_id=role.id,
        jti="jti-1",
        token_type=TokenType.ACCESS,
        issued_at=None,
        expires_at=None,
    )

    assert await resolver.authorize(identity, Resource.SERVICES, Action.EDIT) is True
    assert await resolver.authorize(identity, Resource.SERVICES, Action.DELETE) is False


def test_conflicting_rows_resolve_to_deny():
    role_id = uuid.uuid4()
    snapshot = PermissionSnapshot.from_rows(
        [
            (role_id, "users", "edit", True),
            (role_id, "users", "edit", False),
            (role_id, "users", "view", True),
        ],
        loaded_at=0.0,
    )

    assert snapshot.lookup(role_id, "users", "edit") is False
    assert snapshot.lookup(role_id, "users", "view") is True


async def test_snapshot_is_cached_until_ttl_or_invalidation(db_session):
    clock = TickingClock()
    store = PermissionStore(ttl_seconds=30, redis_client=None, clock=clock)
    resolver = PermissionResolver(store, db_session)
    role = await create_role(db_session, "cached", [])

    assert await resolver.is_allowed(role.id, Resource.BILLING, Action.VIEW) is False

    db_session.add(PermissionEntry(role_id=role.id, resource="billing", action="view", allowed=True))
    await db_session.commit()

    assert await resolver.is_allowed(role.id, Resource.BILLING, Action.VIEW) is False
    clock.now += 31
    assert await resolver.is_allowed(role.id, Resource.BILLING, Action.VIEW) is True

    db_session.add(PermissionEntry(role_id=role.id, resource="billing", action="edit", allowed=True))
    await db_session.commit()
    await store.invalidate()
    assert await resolver.is_allowed(role.id, Resource.BILLING, Action.EDIT) is True


async def test_registry_writes_invalidate_the_store(db_session, permission_store, resolver):
    registry = RoleRegistry(db_session, permission_store)
    role = await registry.create_role(name="staff", rules=[PermissionRule(Resource.STAFF, Action.VIEW)])

    assert await resolver.is_allowed(role.id, Resource.STAFF, Action.VIEW) is True
    assert await resolver.is_allowed(role.id, Resource.STAFF, Action.ADD) is False

    await registry.add_permission(role.id, Resource.STAFF, Action.ADD)

    assert await resolver.is_allowed(role.id, Resource.STAFF, Action.ADD) is True


async def test_snapshot_is_shared_through_redis(db_session):
    redis = FakeRedis()
    writer = PermissionStore(ttl_seconds=30, redis_client=redis)
    role = await create_role(db_session, "shared", [(Resource.ANALYTICS, Action.VIEW, True)])

    assert await PermissionResolver(writer, db_session).is_allowed(role.id, Resource.ANALYTICS, Action.VIEW) is True
    cached = json.loads(redis.values["permissions:snapshot"])
    assert [["analytics", "view", True]] == cached[str(role.id)]

    # A second instance reads the shared copy without touching the database.
    reader = PermissionStore(ttl_seconds=30, redis_client=redis)
    assert await PermissionResolver(reader, None).is_allowed(role.id, Resource.ANALYTICS, Action.VIEW) is True

    await writer.invalidate()
    assert "permissions:snapshot" not in redis.values


async def test_redis_outage_falls_back_to_database(db_session):
    store = PermissionStore(ttl_seconds=30, redis_client=DownRedis())
    role = await create_role(db_session, "fallback", [(Resource.SALONS, Action.EDIT, True)])

    assert await PermissionResolver(store, db_session).is_allowed(role.id, Resource.SALONS, Action.EDIT) is True
    await store.invalidate()


async def test_database_outage_raises_store_unavailable(broken_session):
    resolver = PermissionResolver(PermissionStore(ttl_seconds=30, redis_client=None), broken_session)
    labels = {"operation": "permission_snapshot"}
    before = REGISTRY.get_sample_value("ledger_degraded_total", labels) or 0.0

    with pytest.raises(StoreUnavailableError):
        await resolver.is_allowed(uuid.uuid4(), Resource.SALONS, Action.VIEW)

    assert REGISTRY.get_sample_value("ledger_degraded_total", labels) == before + 1
