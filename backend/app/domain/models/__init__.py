from app.domain.models.issued_token import IssuedToken
from app.domain.models.permission import Action, PermissionEntry, Resource
from app.domain.models.revoked_token import RevocationReason, RevokedToken, TokenType
from app.domain.models.role import Role
from app.domain.models.user_revocation_cutoff import UserRevocationCutoff

__all__ = [
    "Action",
    "IssuedToken",
    "PermissionEntry",
    "Resource",
    "RevocationReason",
    "RevokedToken",
    "Role",
    "TokenType",
    "UserRevocationCutoff",
]
