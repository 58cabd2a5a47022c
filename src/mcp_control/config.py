"""Configuration with pydantic-settings.

All values come from the environment (or a local `.env`). Defaults match the
single-host layout the agent container is deployed with:

    /opt/justgpt-mcp-service          generator checkout
    /opt/justgpt-mcp-service/deploy/.env   shared token file
    /etc/nginx/sites-available/...    shared proxy config
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Control-plane settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    service_name: str = Field(default="mcp-control", description="Service name for logs")
    log_format: Literal["json", "console"] = Field(default="console")
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING, ERROR")

    # HTTP facade
    host: str = "0.0.0.0"  # noqa: S104
    port: int = Field(default=19101, ge=1, le=65535)
    agent_token: str = Field(
        default="",
        description="Shared secret expected in X-Agent-Token; empty disables deploys",
    )
    mcp_base_url: str = Field(
        default="https://mcp.justgpt.ru",
        description="Public origin the proxy serves project mount paths on",
    )

    # Persistent state
    registry_file: Path = Path("data/projects.json")
    mcp_repo_dir: Path = Path("/opt/justgpt-mcp-service")
    mcp_env_file: Path = Path("/opt/justgpt-mcp-service/deploy/.env")
    sources_dir: Path | None = Field(
        default=None,
        description="Root for json payloads; defaults to <mcp_repo_dir>/data",
    )

    # Reverse proxy
    nginx_site: Path = Path("/etc/nginx/sites-available/justgpt.ru.https")
    proxy_server_name: str = "mcp.justgpt.ru"

    # Source fetching
    fetch_timeout_sec: float = Field(default=15.0, gt=0)
    max_source_bytes: int = Field(default=2_000_000, ge=1)

    # Generator / container runtime
    internal_service_port: int = 8080
    command_timeout_sec: float = Field(default=900.0, gt=0)
    generator_image: str = "node:22-alpine"
    generator_in_container: bool = Field(
        default=True,
        description="Run generator commands in an ephemeral container mounting the checkout",
    )
    project_descriptor_template: str = "projects/{id}/project.json"
    compose_descriptor_template: str = "deploy/docker-compose.nginx.{id}.yml"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v

    @property
    def resolved_sources_dir(self) -> Path:
        return self.sources_dir or self.mcp_repo_dir / "data"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
