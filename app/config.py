"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_LANGUAGE = "it-IT"
DEFAULT_WATCH_REGION = "IT"


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="MovieWatch", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_read_token: str | None = Field(
        default=None,
        alias="TMDB_READ_TOKEN",
        validation_alias=AliasChoices("TMDB_READ_TOKEN", "TMDB_API_TOKEN"),
    )
    tmdb_language: str = Field(default=DEFAULT_LANGUAGE, alias="TMDB_LANGUAGE")
    watch_region: str = Field(default=DEFAULT_WATCH_REGION, alias="WATCH_REGION")

    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_image_host: str = Field(default="image.tmdb.org", alias="TMDB_IMAGE_HOST")

    request_timeout_seconds: float = Field(
        default=12.0, alias="REQUEST_TIMEOUT", gt=0, le=120
    )
    search_debounce_ms: int = Field(
        default=320, alias="SEARCH_DEBOUNCE_MS", ge=0, le=5_000
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./moviewatch.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_read_token", mode="before")
    @classmethod
    def _clean_token(cls, value: object) -> str | None:
        """Treat blank credentials as missing."""

        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @field_validator("tmdb_language", mode="before")
    @classmethod
    def _default_language(cls, value: object) -> str:
        if value is None:
            return DEFAULT_LANGUAGE
        return str(value).strip() or DEFAULT_LANGUAGE

    @field_validator("watch_region", mode="before")
    @classmethod
    def _default_region(cls, value: object) -> str:
        if value is None:
            return DEFAULT_WATCH_REGION
        return str(value).strip().upper() or DEFAULT_WATCH_REGION

    @field_validator("tmdb_image_host", mode="before")
    @classmethod
    def _strip_image_host(cls, value: object) -> str:
        """Accept either a bare host or a full origin for the image CDN."""

        text = str(value or "").strip()
        for prefix in ("https://", "http://"):
            if text.startswith(prefix):
                text = text[len(prefix):]
        return text.strip("/") or "image.tmdb.org"

    @property
    def search_debounce_seconds(self) -> float:
        return self.search_debounce_ms / 1000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
