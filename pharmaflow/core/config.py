import json
from typing import List, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "PharmaFlow Ledger"
    env: str = "dev"

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    api_timeout_hint_ms: int = Field(default=300000, ge=1000, le=1_800_000)
    slow_request_ms: int = Field(default=1000, ge=1)

    # CATALOG
    default_reorder_level: int = Field(default=50, ge=0)
    default_max_stock_level: int = Field(default=500, ge=0)
    auto_category_color: str = "#6366f1"

    # SALES
    sales_skip_expired_batches: bool = True

    # IMPORT
    import_default_category: str = "General"
    import_default_supplier: str = "Default Supplier"
    import_default_location: str = "Main Storage"
    import_default_cost_price: float = Field(default=10.0, ge=0)
    import_selling_markup: float = Field(default=1.3, gt=0)
    import_max_rows: int = Field(default=20_000, ge=1)

    # ANALYTICS
    reporting_timezone: str = "UTC"
    analytics_max_workers: int = Field(default=6, ge=1, le=32)
    analytics_top_sellers_limit: int = Field(default=10, ge=1, le=100)
    analytics_top_categories_limit: int = Field(default=6, ge=1, le=100)
    turnover_cogs_days: int = Field(default=30, ge=1, le=365)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_origin_regex: str | None = None

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

    @field_validator("reporting_timezone")
    @classmethod
    def validate_reporting_timezone(cls, value: str) -> str:
        cleaned = (value or "").strip() or "UTC"
        try:
            ZoneInfo(cleaned)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Unknown reporting timezone '{cleaned}'") from exc
        return cleaned

    @field_validator("import_default_category", "import_default_supplier", "import_default_location")
    @classmethod
    def require_non_blank(cls, value: str) -> str:
        cleaned = str(value).strip()
        if not cleaned:
            raise ValueError("Import defaults cannot be blank")
        return cleaned

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
            raise ValueError("DATABASE_URL must point to a networked database in production")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
