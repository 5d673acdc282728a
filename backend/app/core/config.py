from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    # Every postgres flavour is routed through psycopg 3.
    parsed = urlparse(value)
    query = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query.setdefault("sslmode", "require")
    return urlunparse(
        parsed._replace(scheme="postgresql+psycopg", query=urlencode(query, doseq=True))
    )


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    log_level: str = Field(default="INFO", description="Minimum loguru level")
    database_url: AnyUrl | str = Field(
        default="sqlite:///../data/dtf_indexer.db",
        description="SQLAlchemy compatible database URL",
    )
    supabase_db_url: AnyUrl | str | None = Field(
        default=None,
        description="Supabase pooled Postgres connection string for production runs",
    )
    rpc_url: str = Field(
        default="http://127.0.0.1:8545",
        description="JSON-RPC endpoint of the chain node",
    )
    contract_address: str | None = Field(
        default=None,
        description="Address of the DTF market contract",
    )
    contract_abi_path: str | None = Field(
        default=None,
        description="Optional path to a JSON ABI overriding the bundled DTF market ABI",
    )
    rpc_timeout_seconds: float = Field(
        default=30.0, description="Timeout applied to each JSON-RPC request", gt=0
    )
    backfill_lookback_blocks: int = Field(
        default=20_000,
        description="Number of blocks behind the chain head replayed during backfill",
        ge=0,
    )
    live_poll_interval_seconds: float = Field(
        default=2.0,
        description="Delay between log filter polls once the live phase starts",
        gt=0,
    )
    reconcile_on_startup: bool = Field(
        default=True,
        description="Collapse duplicate positions before the historical backfill",
    )
    indexer_autostart: bool = Field(
        default=False,
        description="Start the event indexer in a background thread when the API boots",
    )

    @field_validator("contract_address")
    @classmethod
    def _validate_contract_address(cls, value: str | None) -> str | None:
        if value is None:
            return value
        candidate = value.strip()
        if not candidate:
            return None
        body = candidate[2:] if candidate.lower().startswith("0x") else ""
        if len(body) != 40 or any(char not in "0123456789abcdefABCDEF" for char in body):
            raise ValueError("CONTRACT_ADDRESS must be a 0x-prefixed 20-byte hex address")
        return candidate

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported LOG_LEVEL: {value}")
        return level

    @field_validator("database_url", "supabase_db_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value

        if value.startswith("postgresql+psycopg://"):
            return value

        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]

        return value

    @property
    def resolved_database_url(self) -> str:
        environment = self.environment.lower()
        if environment == "production":
            if not self.supabase_db_url:
                raise ValueError(
                    "SUPABASE_DB_URL must be set when ENVIRONMENT=production"
                )
            return _ensure_sqlalchemy_postgres_scheme(str(self.supabase_db_url))
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
