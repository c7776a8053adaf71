from enum import StrEnum


class RejectionKind(StrEnum):
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"
    REVOKED = "revoked"


class GateError(RuntimeError):
    error_code: str = "gate_error"


class AuthenticationRejected(GateError):
    error_code = "session_invalid"

    def __init__(self, kind: RejectionKind, detail: str | None = None):
        super().__init__(detail or kind.value)
        self.kind = kind
        self.detail = detail


class PermissionDeniedError(GateError):
    error_code = "permission_denied"


class DuplicateTokenError(GateError):
    error_code = "duplicate_token"


class InvalidExpiryError(GateError):
    error_code = "invalid_expiry"


class DuplicateRuleError(GateError):
    error_code = "duplicate_rule"


class DuplicateRoleError(GateError):
    error_code = "duplicate_role"


class RoleNotFoundError(GateError):
    error_code = "role_not_found"


class StoreUnavailableError(GateError):
    error_code = "store_unavailable"


class TokenNotFoundError(GateError):
    error_code = "token_not_found"
