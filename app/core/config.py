from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import orjson
            out = orjson.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except ValueError:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")

    # Ledger store: "mongo" for production, "memory" for tests and local demos
    ledger_backend: str = Field(default="mongo", alias="LEDGER_BACKEND")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="paion", alias="MONGODB_DB_NAME")
    # Multi-document transactions need a replica set
    mongodb_transactions: bool = Field(default=True, alias="MONGODB_TRANSACTIONS")

    # Redis (stats cache + arq); empty disables the cache
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    stats_cache_ttl_seconds: int = Field(default=5, alias="STATS_CACHE_TTL_SECONDS")

    # Requests presenting this key in X-Ledger-Key run in server context
    ledger_service_key: str = Field(default="", alias="LEDGER_SERVICE_KEY")

    # Platform wallets excluded from circulating supply
    treasury_address: str = Field(
        default="0x311479200d45ef0243b92dbcf9849b8f6b931d27ae885197ea73066724f2bcf4",
        alias="TREASURY_ADDRESS",
    )
    royalties_address: str = Field(
        default="0x311479200d45ef0243b92dbcf9849b8f6b931d27ae885197ea73066724f2bcf4",
        alias="ROYALTIES_ADDRESS",
    )

    # Pagination
    default_page_size: int = Field(default=20, alias="DEFAULT_PAGE_SIZE")
    max_page_size: int = Field(default=200, alias="MAX_PAGE_SIZE")

    # Worker
    reconcile_batch_size: int = Field(default=500, alias="RECONCILE_BATCH_SIZE")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))


@lru_cache
def get_settings() -> Settings:
    return Settings()
