"""
Configuration management for the Points Server.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The base grant is a deployment-time policy constant, not user data
    - Changing the base grant shifts every account's balance retroactively

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Never lower POINTS_BASE_GRANT on a live ledger without a migration plan
      (balances that were exactly spent down would go negative)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory holding the SQLite database
        db_filename: Database file name inside data_dir
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "./data"
    db_filename: str = "points.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / self.db_filename

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "./data"),
            db_filename=os.getenv("POINTS_DB_FILE", "points.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )


@dataclass(frozen=True)
class LedgerPolicyConfig:
    """Ledger policy.

    Attributes:
        base_grant: Points every account starts with (never stored per account)
        history_limit: Default number of history entries returned per query
    """

    base_grant: int = 50
    history_limit: int = 100

    @classmethod
    def from_env(cls) -> LedgerPolicyConfig:
        """Load configuration from environment variables."""
        return cls(
            base_grant=int(os.getenv("POINTS_BASE_GRANT", "50")),
            history_limit=int(os.getenv("POINTS_HISTORY_LIMIT", "100")),
        )


@dataclass(frozen=True)
class IssuanceConfig:
    """Bulk token issuance defaults and limits.

    Attributes:
        default_count: Codes generated when no count is given
        default_value: Points per code when no value is given
        default_length: Generated code length when none is given
        max_count: Largest batch a single request may generate
        max_value: Largest point value a single token may carry
        min_length: Shortest generated code
        max_length: Longest generated code
        generation_rounds: Replacement rounds for codes that already exist
    """

    default_count: int = 10
    default_value: int = 5
    default_length: int = 10
    max_count: int = 1000
    max_value: int = 100000
    min_length: int = 6
    max_length: int = 30
    generation_rounds: int = 5

    @classmethod
    def from_env(cls) -> IssuanceConfig:
        """Load configuration from environment variables."""
        return cls(
            default_count=int(os.getenv("TOKEN_DEFAULT_COUNT", "10")),
            default_value=int(os.getenv("TOKEN_DEFAULT_VALUE", "5")),
            default_length=int(os.getenv("TOKEN_DEFAULT_LENGTH", "10")),
            max_count=int(os.getenv("TOKEN_MAX_COUNT", "1000")),
            max_value=int(os.getenv("TOKEN_MAX_VALUE", "100000")),
            min_length=int(os.getenv("TOKEN_MIN_LENGTH", "6")),
            max_length=int(os.getenv("TOKEN_MAX_LENGTH", "30")),
            generation_rounds=int(os.getenv("TOKEN_GENERATION_ROUNDS", "5")),
        )


@dataclass(frozen=True)
class DirectoryConfig:
    """Account directory configuration.

    Attributes:
        public_id_length: Length of generated public account identifiers
        max_retries: Collision retries before signup gives up
    """

    public_id_length: int = 8
    max_retries: int = 20

    @classmethod
    def from_env(cls) -> DirectoryConfig:
        """Load configuration from environment variables."""
        return cls(
            public_id_length=int(os.getenv("PUBLIC_ID_LENGTH", "8")),
            max_retries=int(os.getenv("PUBLIC_ID_MAX_RETRIES", "20")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Aggregates all configuration sections and provides validation.
    HTTP binding lives in api.settings (pydantic-settings).

    Attributes:
        storage: Local storage configuration
        policy: Ledger policy (base grant)
        issuance: Token issuance defaults and limits
        directory: Account directory configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    policy: LedgerPolicyConfig = field(default_factory=LedgerPolicyConfig)
    issuance: IssuanceConfig = field(default_factory=IssuanceConfig)
    directory: DirectoryConfig = field(default_factory=DirectoryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            policy=LedgerPolicyConfig.from_env(),
            issuance=IssuanceConfig.from_env(),
            directory=DirectoryConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.policy.base_grant < 0:
            raise ValueError("POINTS_BASE_GRANT must be >= 0")
        if self.policy.history_limit <= 0:
            raise ValueError("POINTS_HISTORY_LIMIT must be > 0")

        issuance = self.issuance
        if not 1 <= issuance.default_count <= issuance.max_count:
            raise ValueError("TOKEN_DEFAULT_COUNT must be between 1 and TOKEN_MAX_COUNT")
        if not 1 <= issuance.default_value <= issuance.max_value:
            raise ValueError("TOKEN_DEFAULT_VALUE must be between 1 and TOKEN_MAX_VALUE")
        if not 1 <= issuance.min_length <= issuance.max_length:
            raise ValueError("TOKEN_MIN_LENGTH must be between 1 and TOKEN_MAX_LENGTH")
        if not issuance.min_length <= issuance.default_length <= issuance.max_length:
            raise ValueError("TOKEN_DEFAULT_LENGTH must be within the length limits")
        if issuance.generation_rounds < 1:
            raise ValueError("TOKEN_GENERATION_ROUNDS must be >= 1")

        if self.directory.public_id_length < 4:
            raise ValueError("PUBLIC_ID_LENGTH must be >= 4")
        if self.directory.max_retries < 1:
            raise ValueError("PUBLIC_ID_MAX_RETRIES must be >= 1")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "db_path": str(self.storage.db_path),
                "wal_mode": self.storage.wal_mode,
                "base_grant": self.policy.base_grant,
                "token_max_count": self.issuance.max_count,
                "public_id_length": self.directory.public_id_length,
                "log_level": self.observability.log_level,
            },
        )
