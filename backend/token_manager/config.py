"""Application configuration from environment variables."""

import os
from os.path import dirname, abspath, join
from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path
from functools import lru_cache
from dotenv import load_dotenv

# Root is two levels up from backend/token_manager/
base_dir = dirname(dirname(dirname(abspath(__file__))))
env_file_path = join(base_dir, ".env")

if os.path.exists(env_file_path):
    load_dotenv(env_file_path)


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=env_file_path,
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    # Server
    app_name: str = "Token Manager"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 3030

    # Beam broker proxy
    beam_url: str = "http://beam-proxy:8081"
    beam_id: str = "token-manager.proxy.broker"
    beam_secret: str = ""
    task_ttl: str = "60s"

    # Client-side deadline for a single result stream. None waits for the broker.
    stream_timeout_seconds: float | None = 120.0

    # Database
    database_url: str = "sqlite+aiosqlite:///./file.db"

    # Token encryption at rest
    token_encrypt_key: str = "0123456789abcdef0123456789ABCDEF"

    # Logging
    log_level: str = "info"
    syslog_host: str | None = None
    syslog_port: int = 514

    # OpenTelemetry (optional)
    otel_endpoint: str | None = None
    otel_service_name: str = "token-manager"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    s = Settings()
    secrets_path = Path("/run/secrets")

    def _read_secret(secret_name: str) -> str | None:
        secret_file = secrets_path / secret_name
        if secret_file.exists():
            return secret_file.read_text().strip()
        return None

    # Docker secrets shared with the beam proxy deployment
    if secrets_path.exists():
        if not s.beam_secret:
            beam_secret = _read_secret("beam_secret")
            if beam_secret:
                s.beam_secret = beam_secret
        token_encrypt_key = _read_secret("token_encrypt_key")
        if token_encrypt_key:
            s.token_encrypt_key = token_encrypt_key

    return s
