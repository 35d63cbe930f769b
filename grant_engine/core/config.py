"""
Process-level configuration.

Read once from the environment (and a .env file, if present) at process start.
The resulting EngineConfig is frozen and shared read-only.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={value!r}, using {default}")
        return default


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Relational store connection parameters.

    When `url` or `host` is set the engine talks to PostgreSQL, otherwise it
    falls back to the SQLite file at `sqlite_path`.
    """
    host: Optional[str] = None
    port: int = 5432
    database: str = "grant_engine"
    username: Optional[str] = None
    password: Optional[str] = None
    url: Optional[str] = None
    sqlite_path: str = "data/grant_engine.db"

    @property
    def is_postgres(self) -> bool:
        return bool(self.url or self.host)

    def dsn(self) -> str:
        """PostgreSQL connection string."""
        if self.url:
            return self.url
        credentials = ""
        if self.username:
            credentials = quote_plus(self.username)
            if self.password:
                credentials += f":{quote_plus(self.password)}"
            credentials += "@"
        return f"postgresql://{credentials}{self.host}:{self.port}/{self.database}"


@dataclass(frozen=True)
class EngineConfig:
    """
    Immutable engine configuration.

    Attributes:
        openai_api_key: Backend credential. Deep extraction skips the backend when unset.
        openai_model: Chat model used for implicit requirement inference
        database: Relational store parameters
        enable_caching: Route analyses through the result cache
        cache_expiry_hours: Result cache TTL
        cache_path: SQLite file backing the key/value cache (None = in memory)
        max_concurrent_requests: Concurrent calls allowed into the backend
        backend_timeout_seconds: Per-call timeout for the backend
        backend_max_retries: Retry ceiling for backend calls
        min_sample_size: Corpus size below which pattern confidence is capped
        min_text_length: Shortest grant text accepted for extraction
        rules_dir: Extra directory of compliance rule-set JSON files
    """
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    enable_caching: bool = True
    cache_expiry_hours: float = 24.0
    cache_path: Optional[str] = None
    max_concurrent_requests: int = 4
    backend_timeout_seconds: float = 30.0
    backend_max_retries: int = 3
    min_sample_size: int = 5
    min_text_length: int = 40
    rules_dir: Optional[str] = None

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "EngineConfig":
        """Build configuration from environment variables."""
        load_dotenv(dotenv_path)

        database = DatabaseConfig(
            host=os.getenv("DB_HOST") or None,
            port=_env_int("DB_PORT", 5432),
            database=os.getenv("DB_NAME", "grant_engine"),
            username=os.getenv("DB_USER") or None,
            password=os.getenv("DB_PASSWORD") or None,
            url=os.getenv("DATABASE_URL") or None,
            sqlite_path=os.getenv("GRANT_ENGINE_DB_PATH", "data/grant_engine.db"),
        )

        config = cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            database=database,
            enable_caching=_env_bool("ENABLE_CACHING", True),
            cache_expiry_hours=_env_float("CACHE_EXPIRY_HOURS", 24.0),
            cache_path=os.getenv("GRANT_ENGINE_CACHE_PATH") or None,
            max_concurrent_requests=max(1, _env_int("MAX_CONCURRENT_REQUESTS", 4)),
            backend_timeout_seconds=_env_float("BACKEND_TIMEOUT_SECONDS", 30.0),
            backend_max_retries=max(0, _env_int("BACKEND_MAX_RETRIES", 3)),
            min_sample_size=max(1, _env_int("MIN_SAMPLE_SIZE", 5)),
            min_text_length=max(1, _env_int("MIN_TEXT_LENGTH", 40)),
            rules_dir=os.getenv("RULES_DIR") or None,
        )

        logger.info(
            f"Config loaded: caching={config.enable_caching}, "
            f"ttl={config.cache_expiry_hours}h, "
            f"max_concurrent={config.max_concurrent_requests}, "
            f"store={'postgres' if database.is_postgres else database.sqlite_path}"
        )
        return config
