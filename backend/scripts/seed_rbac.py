import asyncio
from uuid import uuid4

from app.application.services.issued_token_service import IssuedTokenLog
from app.application.services.permission_service import PermissionStore
from app.application.services.role_service import ROLE_SUPER_ADMIN, RoleRegistry
from app.infrastructure.db.async_session import AsyncSessionLocal, dispose_async_engine


async def seed_rbac() -> None:
    async with AsyncSessionLocal() as db:
        registry = RoleRegistry(db, PermissionStore(redis_client=None))
        roles = await registry.bootstrap_default_roles()

        print("Default roles:")
        for role in roles:
            print(f"- {role.name}: role_id={role.id} rules={len(role.permissions)}")

        super_admin = next(role for role in roles if role.name == ROLE_SUPER_ADMIN)
        tokens = await IssuedTokenLog(db).issue_pair(user_id=uuid4(), role_id=super_admin.id)
        print("Dev super admin token pair:")
        print(f"- access_token: {tokens.access.token}")
        print(f"- refresh_token: {tokens.refresh.token}")
    await dispose_async_engine()


if __name__ == "__main__":
    asyncio.run(seed_rbac())
