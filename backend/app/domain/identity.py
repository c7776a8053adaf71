from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from app.domain.models.revoked_token import TokenType


@dataclass(frozen=True)
class Identity:
    user_id: UUID
    role_id: UUID
    jti: str
    token_type: TokenType
    issued_at: datetime
    expires_at: datetime
