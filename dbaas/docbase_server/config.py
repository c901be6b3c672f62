"""
Configuration management for Docbase Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for critical settings
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StorageBackend(Enum):
    """Supported persistence backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class StorageConfig:
    """Persistence configuration.

    Attributes:
        backend: Which persistence backend to use
        data_dir: Directory for the SQLite database
        db_filename: SQLite database file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    backend: StorageBackend = StorageBackend.SQLITE
    data_dir: str = "/var/lib/docbase"
    db_filename: str = "docbase.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables.

        Raises:
            ValueError: If STORAGE_BACKEND is not a known backend
        """
        backend_str = os.getenv("STORAGE_BACKEND", "sqlite").lower()
        try:
            backend = StorageBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORAGE_BACKEND '{backend_str}'. Must be one of: memory, sqlite"
            )

        return cls(
            backend=backend,
            data_dir=os.getenv("DATA_DIR", "/var/lib/docbase"),
            db_filename=os.getenv("DB_FILENAME", "docbase.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class AuthConfig:
    """Session/auth configuration.

    Attributes:
        token_ttl_seconds: Token lifetime; 0 means tokens never expire
        single_session: Revoke a user's other tokens on every login
        bcrypt_rounds: bcrypt cost factor (4-31)
        token_cache_size: Tokens kept in memory (LRU); misses read persistence
    """

    token_ttl_seconds: int = 7 * 24 * 3600
    single_session: bool = False
    bcrypt_rounds: int = 12
    token_cache_size: int = 10000

    @classmethod
    def from_env(cls) -> AuthConfig:
        """Load configuration from environment variables."""
        return cls(
            token_ttl_seconds=int(os.getenv("TOKEN_TTL_SECONDS", str(7 * 24 * 3600))),
            single_session=os.getenv("SINGLE_SESSION", "false").lower() == "true",
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "12")),
            token_cache_size=int(os.getenv("TOKEN_CACHE_SIZE", "10000")),
        )


@dataclass(frozen=True)
class RealtimeConfig:
    """Change notification configuration.

    Attributes:
        queue_capacity: Per-subscription delivery queue size (drop-oldest)
    """

    queue_capacity: int = 1000

    @classmethod
    def from_env(cls) -> RealtimeConfig:
        """Load configuration from environment variables."""
        return cls(
            queue_capacity=int(os.getenv("REALTIME_QUEUE_CAPACITY", "1000")),
        )


@dataclass(frozen=True)
class TransportConfig:
    """Realtime WebSocket transport configuration.

    Attributes:
        bind_address: Address to bind the transport (host:port)
        require_auth: Require a valid bearer token to subscribe
        heartbeat_seconds: WebSocket ping interval
    """

    bind_address: str = "0.0.0.0:8080"
    require_auth: bool = True
    heartbeat_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> TransportConfig:
        """Load configuration from environment variables."""
        return cls(
            bind_address=os.getenv("REALTIME_BIND", "0.0.0.0:8080"),
            require_auth=os.getenv("REALTIME_REQUIRE_AUTH", "true").lower() == "true",
            heartbeat_seconds=float(os.getenv("REALTIME_HEARTBEAT_SECONDS", "30")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Observability and logging configuration.

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

    This aggregates all configuration sections and provides validation.

    Attributes:
        storage: Persistence configuration
        auth: Session/auth configuration
        realtime: Change notification configuration
        transport: Realtime transport configuration
        observability: Observability configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            auth=AuthConfig.from_env(),
            realtime=RealtimeConfig.from_env(),
            transport=TransportConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.storage.backend == StorageBackend.SQLITE and not self.storage.data_dir:
            raise ValueError("DATA_DIR is required when STORAGE_BACKEND=sqlite")

        if self.auth.token_ttl_seconds < 0:
            raise ValueError("TOKEN_TTL_SECONDS must be >= 0")
        if not 4 <= self.auth.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31")
        if self.auth.token_cache_size < 1:
            raise ValueError("TOKEN_CACHE_SIZE must be >= 1")

        if self.realtime.queue_capacity < 1:
            raise ValueError("REALTIME_QUEUE_CAPACITY must be >= 1")

        if ":" not in self.transport.bind_address:
            raise ValueError("REALTIME_BIND must be host:port")

        if self.storage.backend == StorageBackend.SQLITE and not os.path.exists(
            self.storage.data_dir
        ):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on startup."
            )

        if self.storage.backend == StorageBackend.MEMORY:
            logger.warning("STORAGE_BACKEND=memory: all data is lost on restart")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "storage_backend": self.storage.backend.value,
                "data_dir": self.storage.data_dir
                if self.storage.backend == StorageBackend.SQLITE
                else None,
                "token_ttl_seconds": self.auth.token_ttl_seconds,
                "single_session": self.auth.single_session,
                "token_cache_size": self.auth.token_cache_size,
                "queue_capacity": self.realtime.queue_capacity,
                "realtime_bind": self.transport.bind_address,
                "require_auth": self.transport.require_auth,
                "log_level": self.observability.log_level,
            },
        )
