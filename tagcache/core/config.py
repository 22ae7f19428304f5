"""Environment-driven store configuration with Pydantic v2."""

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tagcache.core.exceptions import ConfigurationError


class StoreSettings(BaseSettings):
    """Settings for one cache store instance.

    Every field can be supplied through a ``TAGCACHE_`` prefixed environment
    variable (``TAGCACHE_CACHE_DB_COMPLETE_PATH`` and so on) or passed in
    directly.
    """

    # Storage
    cache_db_complete_path: Path
    busy_timeout: int = Field(default=2000, ge=0)  # milliseconds
    turbo_boost: bool = False  # WAL journal + synchronous=NORMAL

    # Maintenance: 0 disables, 1 vacuums on every clean/remove, N vacuums 1 in N
    automatic_vacuum_factor: int = Field(default=10, ge=0)

    # Lifetime used when save() gets no explicit one (None => infinite)
    default_lifetime: Optional[int] = Field(default=3600, ge=0)

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "console"
    log_file: Optional[str] = None

    model_config = SettingsConfigDict(
        env_prefix="TAGCACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="forbid",
        env_parse_none_str="none",
    )

    @field_validator("cache_db_complete_path")
    @classmethod
    def validate_db_path(cls, v: Path) -> Path:
        """Ensure the directory holding the database file exists."""
        if not str(v).strip():
            raise ValueError("cache_db_complete_path has to be set")
        v = Path(v).expanduser()
        if v.is_dir():
            raise ValueError(f"{v} is a directory, expected a database file path")
        v.parent.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {v!r}")
        return level

    @property
    def busy_timeout_seconds(self) -> float:
        return self.busy_timeout / 1000.0


def load_settings(**overrides) -> StoreSettings:
    """Build settings from the environment plus explicit overrides.

    Raises:
        ConfigurationError: if a required option is missing or invalid
    """
    try:
        return StoreSettings(**overrides)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Invalid cache store configuration: {problems}") from e
