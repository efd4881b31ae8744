"""Application configuration using pydantic-settings."""

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ridemetrics.errors import ConfigurationError


class Settings(BaseSettings):
    """Settings loaded from environment variables (or a local .env file)."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    # ClickHouse
    clickhouse_host: str = Field(default="localhost", description="ClickHouse HTTP host")
    clickhouse_port: int = Field(default=8123, description="ClickHouse HTTP port")
    clickhouse_user: str = Field(default="default", description="ClickHouse user")
    clickhouse_password: str = Field(default="", description="ClickHouse password")
    clickhouse_database: str = Field(default="default", description="Default ClickHouse database")

    # Server
    port: int = Field(default=3001, description="HTTP listen port")
    app_env: str = Field(default="development", description="development/staging/production")
    log_level: str = Field(default="INFO", description="Logging level")
    cors_origins: list[str] = Field(default=["*"], description="Allowed CORS origins")


def load_settings(**overrides: object) -> Settings:
    """Build Settings, turning validation failures into ConfigurationError.

    a non-numeric CLICKHOUSE_PORT or PORT ends up here - we want one clear
    message at startup rather than a pydantic traceback.
    """
    try:
        return Settings(**overrides)  # type: ignore[arg-type]
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise ConfigurationError(f"Invalid configuration for: {fields}") from exc
