from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    SHOPIFY_STORE_DOMAIN: str
    SHOPIFY_ACCESS_TOKEN: str
    SHOPIFY_ADMIN_API_VERSION: str = "2025-07"
    SHOPIFY_REQUEST_TIMEOUT_SECONDS: float = 20.0
    SHOPIFY_PRODUCT_PAGE_LIMIT: int = 250
    SHOPIFY_LOCATION_ID: int | None = None
    SHOPIFY_LOCATION_NAME: str | None = None

    CATALOG_DB_URL: str = "sqlite:///./catalog_sync.db"
    CATALOG_DEFAULT_VENDOR: str = "VAULT 27"
    CATALOG_DEFAULT_PRODUCT_TYPE: str = "Merchandise"

    @field_validator("SHOPIFY_STORE_DOMAIN")
    @classmethod
    def normalize_store_domain(cls, value: str) -> str:
        cleaned = value.strip()
        for prefix in ("https://", "http://"):
            if cleaned.startswith(prefix):
                cleaned = cleaned[len(prefix) :]
        cleaned = cleaned.rstrip("/")
        if not cleaned:
            raise ValueError("SHOPIFY_STORE_DOMAIN must not be empty")
        return cleaned

    @field_validator("SHOPIFY_REQUEST_TIMEOUT_SECONDS")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("SHOPIFY_REQUEST_TIMEOUT_SECONDS must be positive")
        return value

    @field_validator("SHOPIFY_PRODUCT_PAGE_LIMIT")
    @classmethod
    def validate_page_limit(cls, value: int) -> int:
        if value < 1 or value > 250:
            raise ValueError("SHOPIFY_PRODUCT_PAGE_LIMIT must be between 1 and 250")
        return value

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class RemoteCatalogConfig(BaseModel):
    """Credentials and call policy handed to the Shopify client.

    Built once from settings (or by hand in tests) so that nothing below the
    client reads process-wide state at call time.
    """

    model_config = ConfigDict(frozen=True)

    store_domain: str
    access_token: str
    api_version: str = "2025-07"
    timeout_seconds: float = 20.0
    product_page_limit: int = 250
    location_id: int | None = None
    location_name: str | None = None

    @classmethod
    def from_settings(cls, source: Settings) -> "RemoteCatalogConfig":
        return cls(
            store_domain=source.SHOPIFY_STORE_DOMAIN,
            access_token=source.SHOPIFY_ACCESS_TOKEN,
            api_version=source.SHOPIFY_ADMIN_API_VERSION,
            timeout_seconds=source.SHOPIFY_REQUEST_TIMEOUT_SECONDS,
            product_page_limit=source.SHOPIFY_PRODUCT_PAGE_LIMIT,
            location_id=source.SHOPIFY_LOCATION_ID,
            location_name=source.SHOPIFY_LOCATION_NAME,
        )

    @property
    def admin_base_url(self) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
