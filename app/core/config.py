import json
from typing import List, Union

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_JWT_SECRET = "dev-jwt-secret-change-before-prod"
DEV_JWT_REFRESH_SECRET = "dev-jwt-refresh-secret-change-before-prod"


class Settings(BaseSettings):
    app_name: str = "Productivity Backend"
    env: str = Field(default="development", validation_alias=AliasChoices("env", "node_env"))
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    web_concurrency: int = Field(default=1, ge=1, le=64)
    log_level: str = "INFO"

    # AUTH
    jwt_secret: str = DEV_JWT_SECRET
    jwt_refresh_secret: str = DEV_JWT_REFRESH_SECRET
    jwt_expires_in_hours: int = Field(default=8, ge=1)
    jwt_refresh_expires_in_days: int = Field(default=7, ge=1)
    jwt_issuer: str = "productivity-app"
    jwt_audience: str = "productivity-app-users"
    bcrypt_rounds: int = Field(default=12, ge=4, le=16)
    login_max_attempts: int = Field(default=5, ge=1)
    login_lock_minutes: int = Field(default=30, ge=1)

    # DATABASE
    database_url: str = "sqlite:///./productivity.db"
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # CACHE / REALTIME
    redis_url: str | None = None
    cache_prefix: str = "productivity_app"
    realtime_backplane: str = "memory"

    # EXTERNAL SERVICES
    deepseek_api_key: str | None = None
    deepseek_base_url: str = "https://api.deepseek.com/v1"
    deepseek_model: str = "deepseek-chat"
    mapbox_access_token: str | None = None
    mapbox_base_url: str = "https://api.mapbox.com"
    external_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    # RATE LIMITING
    rate_limit_window_minutes: int = Field(default=15, ge=1)
    rate_limit_max: int = Field(default=1000, ge=1)
    rate_limit_auth_max: int = Field(default=10, ge=1)
    rate_limit_strict_max: int = Field(default=5, ge=1)
    rate_limit_strict_window_minutes: int = Field(default=60, ge=1)
    rate_limit_organization_max: int = Field(default=1000, ge=1)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            if not v.strip():
                return []
            if v.startswith("["):
                parsed = json.loads(v)
                if not isinstance(parsed, list):
                    raise ValueError("CORS_ORIGINS JSON value must be a list")
                return [str(i).strip() for i in parsed if str(i).strip()]
            return [i.strip() for i in v.split(",") if i.strip()]
        if isinstance(v, list):
            return [str(i).strip() for i in v if str(i).strip()]
        raise ValueError(v)

    @field_validator(
        "redis_url",
        "deepseek_api_key",
        "mapbox_access_token",
        mode="before",
    )
    @classmethod
    def normalize_optional_strings(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @field_validator("realtime_backplane")
    @classmethod
    def validate_realtime_backplane(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"memory", "redis"}:
            raise ValueError("REALTIME_BACKPLANE must be 'memory' or 'redis'")
        return normalized

    @property
    def is_production(self) -> bool:
        return self.env.lower().strip() in {"prod", "production"}

    @property
    def is_development(self) -> bool:
        return self.env.lower().strip() in {"dev", "development", "local", "test"}

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        if not self.is_production:
            return self

        weak_secrets = {
            "",
            "change_me",
            "secret",
            "your-secret-key",
            DEV_JWT_SECRET,
            DEV_JWT_REFRESH_SECRET,
        }
        for name, value in (
            ("JWT_SECRET", self.jwt_secret),
            ("JWT_REFRESH_SECRET", self.jwt_refresh_secret),
        ):
            if value.strip() in weak_secrets or len(value.strip()) < 32:
                raise ValueError(f"{name} must be a strong random value in production")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ in production")

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")

        if self.realtime_backplane == "redis" and not self.redis_url:
            raise ValueError("REALTIME_BACKPLANE=redis requires REDIS_URL")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
        populate_by_name=True,
    )


settings = Settings()
