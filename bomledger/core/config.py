import json
from typing import Any, List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_origin_list(value: Any) -> list[str]:
    """Accept a comma separated string, a JSON list string or a list."""
    if value is None:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if raw.startswith("["):
            value = json.loads(raw)
            if not isinstance(value, list):
                raise ValueError("CORS_ORIGINS JSON value must be a list")
        else:
            value = raw.split(",")
    if not isinstance(value, list):
        raise ValueError(value)
    return [str(item).strip() for item in value if str(item).strip()]


class Settings(BaseSettings):
    app_name: str = "BOM Ledger Backend"
    env: str = "dev"
    log_level: str = Field(default="INFO", pattern="(?i)^(debug|info|warning|error)$")

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    api_timeout_hint_ms: int = Field(default=300000, ge=1000, le=1_800_000)

    # INVENTORY
    draft_batch_approve_limit: int = Field(default=50, ge=1, le=50)
    lot_expiry_warning_days: int = Field(default=30, ge=0, le=365)

    # TENANT SETTING DEFAULTS
    default_allow_negative_inventory: bool = False
    default_enforce_lot_expiry: bool = True
    default_allow_expired_lot_override: bool = True
    default_reorder_warning_multiplier: float = Field(default=1.5, ge=1.0, le=10.0)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_origin_regex: str | None = None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, value: Any) -> List[str]:
        return _parse_origin_list(value)

    @field_validator("cors_origin_regex", mode="before")
    @classmethod
    def normalize_optional_strings(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")
        if self.cors_origin_regex:
            raise ValueError("CORS_ORIGIN_REGEX cannot be set in production")
        if self.database_url.lower().startswith("sqlite"):
            raise ValueError("DATABASE_URL must point at a transactional server database in production")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
