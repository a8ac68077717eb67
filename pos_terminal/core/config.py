from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = Field(default="POS Terminal", alias="APP_NAME")
    app_env: str = Field(default="dev", alias="APP_ENV")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Backend REST API
    api_base_url: str = Field(default="http://127.0.0.1:5000", alias="API_BASE_URL")
    api_timeout_seconds: float = Field(default=15.0, alias="API_TIMEOUT_SECONDS")
    api_access_token: Optional[str] = Field(default=None, alias="API_ACCESS_TOKEN")
    api_refresh_token: Optional[str] = Field(default=None, alias="API_REFRESH_TOKEN")
    token_refresh_margin_seconds: int = Field(default=300, alias="TOKEN_REFRESH_MARGIN_SECONDS")

    # Terminal
    shop_id: Optional[str] = Field(default=None, alias="SHOP_ID")
    currency: str = Field(default="NGN", alias="CURRENCY")
    scan_dedup_seconds: float = Field(default=2.0, alias="SCAN_DEDUP_SECONDS")
    stock_stale_seconds: float = Field(default=300.0, alias="STOCK_STALE_SECONDS")
    idempotency_ttl_seconds: int = Field(default=3600, alias="IDEMPOTENCY_TTL_SECONDS")
    sale_audit_file: str = Field(default="data/sale_audit.jsonl", alias="SALE_AUDIT_FILE")

    class Config:
        env_file = ".env"
        populate_by_name = True


settings = Settings()
