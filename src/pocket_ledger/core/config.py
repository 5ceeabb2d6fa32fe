from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    secret_key: str = "change-me"
    access_token_exp_minutes: int = 60 * 24

    database_url: str = "sqlite:///./pocket_ledger.db"

    storage_backend: Literal["local", "s3"] = "local"
    local_storage_path: Path = Path(".local_storage")
    scratch_path: Path = Path(".scratch")

    s3_endpoint_url: str | None = None
    s3_region: str | None = None
    s3_bucket: str = "pocket-ledger"
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None
    s3_timeout_seconds: float = 30.0

    base_currency: str = "EUR"
    fx_api_url: str = "https://api.exchangerate-api.com/v4/latest"
    fx_timeout_seconds: float = 10.0
    fx_cache_ttl_seconds: int = 3600

    vision_api_key: str | None = None
    vision_base_url: str = "https://api.groq.com/openai/v1"
    vision_model: str = "meta-llama/llama-4-scout-17b-16e-instruct"
    vision_timeout_seconds: float = 30.0

    tinypng_api_key: str | None = None
    tinypng_api_url: str = "https://api.tinify.com"
    tinypng_timeout_seconds: float = 30.0

    pdf_rasterizer_enabled: bool = True
    pdf_render_dpi: int = 150
    jpeg_quality: int = 85

    # Vision provider caps base64 payloads at 4 MiB; 3 MiB leaves room for the inflation.
    max_image_bytes: int = 3 * 1024 * 1024
    max_image_megapixels: float = 33.0
    max_upload_bytes: int = 5 * 1024 * 1024


settings = Settings()
