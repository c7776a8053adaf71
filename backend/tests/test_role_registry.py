import uuid

import pytest

from app.application.services.permission_service import PermissionResolver
from app.application.services.role_service import (
    DEFAULT_ROLES,
    ROLE_ADMIN,
    ROLE_CUSTOMER,
    ROLE_SALON_OWNER,
    ROLE_SUPER_ADMIN,
    PermissionRule,
    RoleRegistry,
)
from app.domain.errors import DuplicateRoleError, DuplicateRuleError, RoleNotFoundError
from app.domain.models.permission import Action, Resource
from app.domain.models.role import DEFAULT_ROLE_COLOR


@pytest.fixture
def registry(db_session, permission_store) -> RoleRegistry:
    return RoleRegistry(db_session, permission_store)


@pytest.fixture
def resolver(db_session, permission_store) -> PermissionResolver:
    return PermissionResolver(permission_store, db_session)


async def test_create_role_with_rules(registry):
    role = await registry.create_role(
        name="  manager  ",
        description="Salon manager",
        rules=[PermissionRule(Resource.STAFF, Action.EDIT), PermissionRule(Resource.BILLING, Action.VIEW, False)],
    )

    assert role.name == "manager"
    assert role.color == DEFAULT_ROLE_COLOR
    assert {(entry.resource, entry.action, entry.allowed) for entry in role.permissions} == {
        ("staff", "edit", True),
        ("billing", "view", False),
    }


async def test_role_names_are_unique(registry):
    await registry.create_role(name="stylist")

    with pytest.raises(DuplicateRoleError):
        await registry.create_role(name="stylist")


async def test_duplicate_rules_in_one_payload_are_rejected(registry):
    with pytest.raises(DuplicateRuleError):
        await registry.create_role(
            name="twice",
            rules=[PermissionRule(Resource.USERS, Action.VIEW), PermissionRule(Resource.USERS, Action.VIEW, False)],
        )
    assert await registry.get_role_by_name("twice") is None


async def test_add_permission_rejects_existing_rule(registry):
    role = await registry.create_role(name="auditor", rules=[PermissionRule(Resource.REPORTS, Action.VIEW)])

    with pytest.raises(DuplicateRuleError):
        await registry.add_permission(role.id, Resource.REPORTS, Action.VIEW)


async def test_replace_permissions_swaps_the_whole_set(registry, resolver):
    role = await registry.create_role(
        name="front-desk",
        rules=[PermissionRule(Resource.APPOINTMENTS, Action.VIEW), PermissionRule(Resource.APPOINTMENTS, Action.ADD)],
    )
    assert await resolver.is_allowed(role.id, Resource.APPOINTMENTS, Action.ADD) is True

    updated = await registry.replace_permissions(role.id, [PermissionRule(Resource.REVIEWS, Action.VIEW)])

    assert [(entry.resource, entry.action) for entry in updated.permissions] == [("reviews", "view")]
    assert await resolver.is_allowed(role.id, Resource.APPOINTMENTS, Action.ADD) is False
    assert await resolver.is_allowed(role.id, Resource.REVIEWS, Action.VIEW) is True

    with pytest.raises(DuplicateRuleError):
        await registry.replace_permissions(
            role.id,
            [PermissionRule(Resource.REVIEWS, Action.VIEW), PermissionRule(Resource.REVIEWS, Action.VIEW)],
        )


async def test_update_and_delete_role(registry, resolver):
    role = await registry.create_role(name="temp", rules=[PermissionRule(Resource.SALONS, Action.VIEW)])
    await registry.create_role(name="taken")

    updated = await registry.update_role(role.id, name="renamed", color="#000000")
    assert updated.name == "renamed"
    assert updated.color == "#000000"

    with pytest.raises(DuplicateRoleError):
        await registry.update_role(role.id, name="taken")

    await registry.delete_role(role.id)
    with pytest.raises(RoleNotFoundError):
        await registry.get_role(role.id)
    assert await resolver.is_allowed(role.id, Resource.SALONS, Action.VIEW) is False


async def test_missing_role_is_reported(registry):
    with pytest.raises(RoleNotFoundError):
        await registry.add_permission(uuid.uuid4(), Resource.USERS, Action.VIEW)


async def test_bootstrap_default_roles_is_idempotent(registry):
    first = await registry.bootstrap_default_roles()
    second = await registry.bootstrap_default_roles()

    assert [role.name for role in first] == list(DEFAULT_ROLES)
    assert [role.id for role in first] == [role.id for role in second]
    assert len(await registry.list_roles()) == 4


async def test_default_role_matrix(registry, resolver):
    roles = {role.name: role for role in await registry.bootstrap_default_roles()}

    super_admin = roles[ROLE_SUPER_ADMIN].id
    assert all([await resolver.is_allowed(super_admin, resource, action) for resource in Resource for action in Action])

    admin = roles[ROLE_ADMIN].id
    assert await resolver.is_allowed(admin, Resource.BILLING, Action.DELETE) is False
    assert await resolver.is_allowed(admin, Resource.SETTINGS, Action.DELETE) is False
    assert await resolver.is_allowed(admin, Resource.USERS, Action.DELETE) is True

    owner = roles[ROLE_SALON_OWNER].id
    assert await resolver.is_allowed(owner, Resource.APPOINTMENTS, Action.DELETE) is True
    assert await resolver.is_allowed(owner, Resource.USERS, Action.DELETE) is False
    assert await resolver.is_allowed(owner, Resource.STAFF, Action.EDIT) is True
    assert await resolver.allowed_actions(owner, Resource.SUPPORT) == {Action.VIEW, Action.ADD}

    customer = roles[ROLE_CUSTOMER].id
    assert await resolver.is_allowed(customer, Resource.SALONS, Action.VIEW) is True
    assert await resolver.is_allowed(customer, Resource.SALONS, Action.EDIT) is False
    assert await resolver.is_allowed(customer, Resource.REVIEWS, Action.DELETE) is True
    assert await resolver.is_allowed(customer, Resource.SUPPORT, Action.EDIT) is False
