from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Session Gate"
    app_env: str = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "session_gate"
    postgres_user: str = "session_gate"
    postgres_password: str = "session_gate"

    redis_host: str = "localhost"
    redis_port: int = 6379

    database_url: str | None = None
    db_echo: bool = False
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout_seconds: float = 5.0
    redis_url: str | None = None
    frontend_origin: str = "http://localhost:3000"
    additional_frontend_origins: str = ""

    jwt_secret_key: str = "change_this_in_production"
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "session-gate"
    jwt_audience: str = "scheduling-platform"
    jwt_access_token_expire_minutes: int = 15
    jwt_refresh_token_expire_minutes: int = 10080
    jwt_leeway_seconds: int = 0

    ledger_lookup_timeout_seconds: float = 0.5
    revocation_purge_interval_seconds: int = 3600
    revocation_retention_grace_seconds: int = 86400
    revocation_audit_default_limit: int = 50

    permission_cache_ttl_seconds: int = 30
    permission_cache_redis_enabled: bool = True
    permission_cache_redis_key: str = "permissions:snapshot"

    auth_expose_rejection_kind: bool = False

    @property
    def cors_allowed_origins(self) -> list[str]:
        origins = [self.frontend_origin.strip()]
        if self.additional_frontend_origins.strip():
            origins.extend(
                [value.strip() for value in self.additional_frontend_origins.split(",") if value.strip()]
            )
        unique: list[str] = []
        for origin in origins:
            if origin and origin not in unique:
                unique.append(origin)
        return unique

    @property
    def max_token_lifetime_seconds(self) -> int:
        return max(self.jwt_access_token_expire_minutes, self.jwt_refresh_token_expire_minutes) * 60

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def sqlalchemy_database_uri(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def cache_redis_url(self) -> str:
        if self.redis_url:
            return self.redis_url
        return f"redis://{self.redis_host}:{self.redis_port}/0"


settings = Settings()
