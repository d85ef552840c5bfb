from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Loads keys from process env, and also from a local .env file for convenience.
    model_config = SettingsConfigDict(env_prefix="", extra="ignore", env_file=".env", env_file_encoding="utf-8")

    # Keys
    openai_api_key: str | None = None
    gemini_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"

    # Models
    openai_image_model: str = "gpt-image-1"
    openai_vision_model: str = "gpt-4o-2024-08-06"
    openai_video_model: str = "sora-2"
    gemini_image_model: str = "gemini-2.5-flash-image-preview"

    # Which backend serves still images: "openai" or "gemini".
    image_backend: str = "openai"

    # Async job lifecycle
    job_poll_interval_seconds: float = 5.0
    job_max_poll_attempts: int = 120
    job_submit_attempts: int = 3
    job_submit_retry_delay_seconds: float = 3.0
    # Finished jobs kept in memory for GET /jobs/{id}; oldest are dropped first.
    job_max_finished: int = 500
    video_size: str = "1280x720"

    # Delivery proxy
    delivery_attempts: int = 3
    delivery_backoff_seconds: float = 1.0
    delivery_timeout_seconds: float = 30.0

    # Batches
    batch_concurrency: int = 2

    # Per-preset method overrides, e.g. METHOD_PREFERENCES='{"hero": "hybrid"}'
    method_preferences: dict[str, str] = {}


settings = Settings()
