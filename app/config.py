from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DIGITAL_PRODUCTS_DB_URL: str = "sqlite:///./digital_products.db"

    SHOPIFY_SHOP_DOMAIN: str | None = None
    SHOPIFY_ADMIN_API_VERSION: str = "2024-10"
    SHOPIFY_REQUEST_TIMEOUT_SECONDS: float = 20.0
    DIGITAL_PRODUCT_TAGS: list[str] = ["Digital Product"]

    MEDIA_STORAGE_BUCKET: str | None = None
    MEDIA_STORAGE_ENDPOINT: str | None = None
    MEDIA_STORAGE_REGION: str = "nyc3"
    MEDIA_STORAGE_ACCESS_KEY: str | None = None
    MEDIA_STORAGE_SECRET_KEY: str | None = None
    MEDIA_STORAGE_KEY_PREFIX: str = "private"
    MEDIA_STORAGE_USE_SSL: bool = True
    MEDIA_STORAGE_FORCE_PATH_STYLE: bool = True

    UPLOAD_MAX_FILE_BYTES: int = 5 * 1024 * 1024 * 1024
    UPLOAD_MAX_FILES: int = 1000
    UPLOAD_MAX_FIELDS: int = 1000
    UPLOAD_CONCURRENCY: int = 4
    BLOB_DELETE_CONCURRENCY: int = 4
    STOREFRONT_SYNC_CONCURRENCY: int = 4

    BACKEND_CORS_ORIGINS: list[str] = ["*"]

    @field_validator("SHOPIFY_SHOP_DOMAIN")
    @classmethod
    def normalize_shop_domain(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip().lower()
        for scheme in ("https://", "http://"):
            if cleaned.startswith(scheme):
                cleaned = cleaned[len(scheme):]
        cleaned = cleaned.rstrip("/")
        return cleaned or None

    @field_validator("UPLOAD_CONCURRENCY", "BLOB_DELETE_CONCURRENCY", "STOREFRONT_SYNC_CONCURRENCY")
    @classmethod
    def validate_concurrency(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Concurrency limits must be at least 1")
        return value

    @property
    def media_storage_prefix(self) -> str:
        return (self.MEDIA_STORAGE_KEY_PREFIX or "").strip("/")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
