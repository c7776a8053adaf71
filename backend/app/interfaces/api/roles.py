from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from app.application.services.permission_service import PermissionResolver
from app.application.services.role_service import PermissionRule, RoleRegistry
from app.domain.identity import Identity
from app.domain.models.permission import Action, Resource
from app.domain.models.role import Role
from app.interfaces.api.deps import get_resolver, get_role_registry, require_permission

router = APIRouter(prefix="/roles", tags=["roles"])


class PermissionRuleRequest(BaseModel):
    resource: Resource
    action: Action
    allowed: bool = True


class RoleCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    description: str | None = Field(default=None, max_length=255)
    color: str | None = Field(default=None, max_length=16)
    permissions: list[PermissionRuleRequest] = Field(default_factory=list)


class RolePatchRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=64)
    description: str | None = Field(default=None, max_length=255)
    color: str | None = Field(default=None, max_length=16)


class PermissionReplaceRequest(BaseModel):
    permissions: list[PermissionRuleRequest]


def _rules(items: list[PermissionRuleRequest]) -> list[PermissionRule]:
    return [PermissionRule(resource=item.resource, action=item.action, allowed=item.allowed) for item in items]


def role_payload(role: Role, *, with_permissions: bool = True) -> dict:
    payload = {
        "id": str(role.id),
        "name": role.name,
        "description": role.description,
        "color": role.color,
    }
    if with_permissions:
        payload["permissions"] = [
            {"resource": entry.resource, "action": entry.action, "allowed": entry.allowed}
            for entry in sorted(role.permissions, key=lambda item: (item.resource, item.action))
        ]
    return payload


@router.get("", status_code=status.HTTP_200_OK)
async def list_roles(
    registry: RoleRegistry = Depends(get_role_registry),
    identity: Identity = Depends(require_permission(Resource.ROLES, Action.VIEW)),
) -> dict:
    roles = await registry.list_roles()
    return {"items": [role_payload(role) for role in roles]}


@router.get("/list", status_code=status.HTTP_200_OK)
async def list_role_names(
    registry: RoleRegistry = Depends(get_role_registry),
    identity: Identity = Depends(require_permission(Resource.ROLES, Action.VIEW)),
) -> dict:
    roles = await registry.list_roles()
    return {"items": [role_payload(role, with_permissions=False) for role in roles]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_role(
    payload: RoleCreateRequest,
    registry: RoleRegistry = Depends(get_role_registry),
    identity: Identity = Depends(require_permission(Resource.ROLES, Action.ADD)),
) -> dict:
    role = await registry.create_role(
        name=payload.name,
        description=payload.description,
        color=payload.color,
        rules=_rules(payload.permissions),
    )
    return role_payload(role)


@router.patch("/{role_id}", status_code=status.HTTP_200_OK)
async def update_role(
    role_id: UUID,
    payload: RolePatchRequest,
    registry: RoleRegistry = Depends(get_role_registry),
    identity: Identity = Depends(require_permission(Resource.ROLES, Action.EDIT)),
) -> dict:
    role = await registry.update_role(
        role_id,
        name=payload.name,
        description=payload.description,
        color=payload.color,
    )
    return role_payload(role)


@router.delete("/{role_id}", status_code=status.HTTP_200_OK)
async def delete_role(
    role_id: UUID,
    registry: RoleRegistry = Depends(get_role_registry),
    identity: Identity = Depends(require_permission(Resource.ROLES, Action.DELETE)),
) -> dict:
    await registry.delete_role(role_id)
    return {"message": "Role deleted successfully"}


@router.put("/{role_id}/permissions", status_code=status.HTTP_200_OK)
async def replace_permissions(
    role_id: UUID,
    payload: PermissionReplaceRequest,
    registry: RoleRegistry = Depends(get_role_registry),
    identity: Identity = Depends(require_permission(Resource.ROLES, Action.EDIT)),
) -> dict:
    role = await registry.replace_permissions(role_id, _rules(payload.permissions))
    return role_payload(role)


@router.get("/{role_id}/allowed-actions", status_code=status.HTTP_200_OK)
async def allowed_actions(
    role_id: UUID,
    resource: Resource = Query(...),
    resolver: PermissionResolver = Depends(get_resolver),
    identity: Identity = Depends(require_permission(Resource.ROLES, Action.VIEW)),
) -> dict:
    actions = await resolver.allowed_actions(role_id, resource)
    return {
        "role_id": str(role_id),
        "resource": resource.value,
        "actions": sorted(action.value for action in actions),
    }
