import logging
from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.services.permission_service import PermissionStore
from app.domain.errors import DuplicateRoleError, DuplicateRuleError, RoleNotFoundError
from app.domain.models.permission import Action, PermissionEntry, Resource
from app.domain.models.role import DEFAULT_ROLE_COLOR, Role

logger = logging.getLogger(__name__)

ROLE_SUPER_ADMIN = "super admin"
ROLE_ADMIN = "admin"
ROLE_SALON_OWNER = "salon owner"
ROLE_CUSTOMER = "customer"


@dataclass(frozen=True)
class PermissionRule:
    resource: Resource
    action: Action
    allowed: bool = True


def _full_matrix(allowed) -> list[PermissionRule]:
    return [
        PermissionRule(resource=resource, action=action, allowed=allowed(resource, action))
        for resource in Resource
        for action in Action
    ]


def _admin_allows(resource: Resource, action: Action) -> bool:
    return not (resource in {Resource.BILLING, Resource.SETTINGS} and action == Action.DELETE)


def _salon_owner_allows(resource: Resource, action: Action) -> bool:
    if resource == Resource.SUPPORT:
        return action in {Action.VIEW, Action.ADD}
    if action == Action.DELETE:
        return resource in {Resource.REVIEWS, Resource.APPOINTMENTS}
    return True


def _customer_allows(resource: Resource, action: Action) -> bool:
    if resource == Resource.SUPPORT:
        return action in {Action.VIEW, Action.ADD}
    if action == Action.VIEW:
        return True
    return resource in {Resource.REVIEWS, Resource.APPOINTMENTS}


DEFAULT_ROLES: dict[str, tuple[str, list[PermissionRule]]] = {
    ROLE_SUPER_ADMIN: ("Full platform access", _full_matrix(lambda resource, action: True)),
    ROLE_ADMIN: ("Platform administration", _full_matrix(_admin_allows)),
    ROLE_SALON_OWNER: ("Manages a salon and its staff", _full_matrix(_salon_owner_allows)),
    ROLE_CUSTOMER: ("Books and reviews appointments", _full_matrix(_customer_allows)),
}


def _check_unique(rules: Iterable[PermissionRule]) -> list[PermissionRule]:
    seen: set[tuple[str, str]] = set()
    result = []
    for rule in rules:
        key = (Resource(rule.resource).value, Action(rule.action).value)
        if key in seen:
            raise DuplicateRuleError(f"duplicate rule {key[0]}:{key[1]}")
        seen.add(key)
        result.append(rule)
    return result


class RoleRegistry:
    """Administrative writes to roles and their permission rows.

    Every successful write invalidates the permission store so this process
    sees the change on its next check.
    """

    def __init__(self, db: AsyncSession, store: PermissionStore):
        self.db = db
        self.store = store

    async def list_roles(self) -> list[Role]:
        return list((await self.db.execute(select(Role).order_by(Role.name.asc()))).scalars().all())

    async def get_role(self, role_id: UUID) -> Role:
        query = select(Role).where(Role.id == role_id).execution_options(populate_existing=True)
        role = (await self.db.execute(query)).scalar_one_or_none()
        if role is None:
            raise RoleNotFoundError(f"role {role_id} not found")
        return role

    async def get_role_by_name(self, name: str) -> Role | None:
        return (await self.db.execute(select(Role).where(Role.name == name))).scalar_one_or_none()

    async def create_role(
        self,
        *,
        name: str,
        description: str | None = None,
        color: str | None = None,
        rules: Iterable[PermissionRule] = (),
    ) -> Role:
        name = name.strip()
        if not name:
            raise ValueError("role name is required")
        rules = _check_unique(rules)
        if await self.get_role_by_name(name) is not None:
            raise DuplicateRoleError(f"role {name} already exists")

        role = Role(name=name, description=description, color=color or DEFAULT_ROLE_COLOR)
        role.permissions = [
            PermissionEntry(resource=Resource(rule.resource).value, action=Action(rule.action).value, allowed=rule.allowed)
            for rule in rules
        ]
        self.db.add(role)
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise DuplicateRoleError(f"role {name} already exists") from exc
        await self.store.invalidate()
        logger.info("role_created role_id=%s name=%s rules=%s", role.id, role.name, len(rules))
        return await self.get_role(role.id)

    async def update_role(
        self,
        role_id: UUID,
        *,
        name: str | None = None,
        description: str | None = None,
        color: str | None = None,
    ) -> Role:
        role = await self.get_role(role_id)
        if name is not None and name.strip() and name.strip() != role.name:
            if await self.get_role_by_name(name.strip()) is not None:
                raise DuplicateRoleError(f"role {name} already exists")
            role.name = name.strip()
        if description is not None:
            role.description = description
        if color is not None:
            role.color = color
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise DuplicateRoleError(f"role {name} already exists") from exc
        logger.info("role_updated role_id=%s", role_id)
        return await self.get_role(role_id)

    async def delete_role(self, role_id: UUID) -> None:
        role = await self.get_role(role_id)
        await self.db.delete(role)
        await self.db.commit()
        await self.store.invalidate()
        logger.info("role_deleted role_id=%s", role_id)

    async def add_permission(
        self,
        role_id: UUID,
        resource: Resource | str,
        action: Action | str,
        allowed: bool = True,
    ) -> PermissionEntry:
        await self.get_role(role_id)
        resource = Resource(resource)
        action = Action(action)
        existing = (
            await self.db.execute(
                select(PermissionEntry.id).where(
                    PermissionEntry.role_id == role_id,
                    PermissionEntry.resource == resource.value,
                    PermissionEntry.action == action.value,
                )
            )
        ).first()
        if existing is not None:
            raise DuplicateRuleError(f"rule {resource.value}:{action.value} already exists for role {role_id}")

        entry = PermissionEntry(role_id=role_id, resource=resource.value, action=action.value, allowed=allowed)
        self.db.add(entry)
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise DuplicateRuleError(
                f"rule {resource.value}:{action.value} already exists for role {role_id}"
            ) from exc
        await self.store.invalidate()
        logger.info(
            "permission_added role_id=%s resource=%s action=%s allowed=%s",
            role_id,
            resource.value,
            action.value,
            allowed,
        )
        return entry

    async def replace_permissions(self, role_id: UUID, rules: Iterable[PermissionRule]) -> Role:
        rules = _check_unique(rules)
        await self.get_role(role_id)
        await self.db.execute(delete(PermissionEntry).where(PermissionEntry.role_id == role_id))
        for rule in rules:
            self.db.add(
                PermissionEntry(
                    role_id=role_id,
                    resource=Resource(rule.resource).value,
                    action=Action(rule.action).value,
                    allowed=rule.allowed,
                )
            )
        await self.db.commit()
        await self.store.invalidate()
        logger.info("permissions_replaced role_id=%s rules=%s", role_id, len(rules))
        return await self.get_role(role_id)

    async def bootstrap_default_roles(self) -> list[Role]:
        roles = []
        for name, (description, rules) in DEFAULT_ROLES.items():
            role = await self.get_role_by_name(name)
            if role is None:
                role = await self.create_role(name=name, description=description, rules=rules)
                logger.info("default_role_seeded name=%s", name)
            roles.append(role)
        return roles
