from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from source_registry_core.db import PostgresConfig

DEFAULT_USER_AGENT = "SourceRegistryBot/1.0 (+https://example.org/bot)"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    pg_dsn: str | None = Field(default=None, alias="PG_DSN")
    pg_schema: str = Field(default="public", alias="PG_SCHEMA")
    postgres_host: str | None = Field(default=None, alias="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, alias="POSTGRES_PORT")
    postgres_db: str | None = Field(default=None, alias="POSTGRES_DB")
    postgres_user: str | None = Field(default=None, alias="POSTGRES_USER")
    postgres_password: SecretStr | None = Field(default=None, alias="POSTGRES_PASSWORD")

    llm_base_url: str | None = Field(default=None, alias="LLM_BASE_URL")
    llm_api_key: SecretStr | None = Field(default=None, alias="LLM_API_KEY")
    llm_model: str = Field(default="gpt-4o-mini", alias="LLM_MODEL")
    llm_timeout_s: float = Field(default=120.0, alias="LLM_TIMEOUT_S")

    user_agent: str = Field(default=DEFAULT_USER_AGENT, alias="REGISTRY_USER_AGENT")
    rate_limit_per_minute: int = Field(default=30, alias="REGISTRY_RATE_LIMIT_PER_MINUTE")
    fetch_timeout_s: float = Field(default=30.0, alias="REGISTRY_FETCH_TIMEOUT_S")
    fetch_retries: int = Field(default=3, alias="REGISTRY_FETCH_RETRIES")
    retry_delay_s: float = Field(default=1.0, alias="REGISTRY_RETRY_DELAY_S")
    robots_cache_ttl_s: float = Field(default=3600.0, alias="ROBOTS_CACHE_TTL_S")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")
    log_buffer_size: int = Field(default=1000, alias="REGISTRY_LOG_BUFFER_SIZE")

    wikimedia_user_agent: str = Field(default=DEFAULT_USER_AGENT, alias="WIKIMEDIA_USER_AGENT")

    def postgres(self) -> PostgresConfig:
        return PostgresConfig(
            dsn=self.pg_dsn,
            host=self.postgres_host,
            port=self.postgres_port,
            db=self.postgres_db,
            user=self.postgres_user,
            password=self.postgres_password,
            schema=self.pg_schema,
        )


def load_settings() -> Settings:
    return Settings()
