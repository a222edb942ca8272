"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="NoSubVOD", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=23455, alias="PORT")

    gql_api_url: HttpUrl = Field(
        default="https://gql.twitch.tv/gql", alias="GQL_API_URL"
    )
    gql_client_id: str = Field(
        default="kimne78kx3ncx6brgo4mv6wki5h1ko", alias="GQL_CLIENT_ID"
    )
    usher_url: HttpUrl = Field(
        default="https://usher.ttvnw.net", alias="USHER_URL"
    )
    user_agent: str = Field(default="Mozilla/5.0", alias="USER_AGENT")

    upstream_timeout_seconds: float = Field(default=15.0, alias="UPSTREAM_TIMEOUT")
    probe_timeout_seconds: float = Field(default=5.0, alias="PROBE_TIMEOUT")
    variant_proxy_ttl_seconds: int = Field(
        default=300, alias="VARIANT_PROXY_TTL", ge=30, le=3_600
    )
    trends_cache_seconds: int = Field(
        default=900, alias="TRENDS_CACHE_TTL", ge=0, le=86_400
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./nosubvod.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("upstream_timeout_seconds", "probe_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timeouts must be positive")
        return value

    @property
    def usher_hls_base(self) -> str:
        """Return the live HLS endpoint prefix without a trailing slash."""

        return f"{str(self.usher_url).rstrip('/')}/api/channel/hls"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
