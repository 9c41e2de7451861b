"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Conversions API (upstream)
    graph_api_base_url: str = "https://graph.facebook.com"
    graph_api_version: str = "v17.0"
    forward_timeout_seconds: float = 10.0
    default_action_source: str = "website"

    # Encryption of forwarding credentials at rest (Fernet key)
    encryption_key: str = ""

    # Admin read API (HTTP Basic)
    admin_username: str = "admin"
    admin_password: str = ""

    # Sentry
    sentry_dsn: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
