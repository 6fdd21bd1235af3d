"""
kvcache — Configuration Schemas

Defines typed engine configuration using Pydantic for validation and type safety.

Engine configs are frozen: they are validated once at construction and any
later assignment raises. A different configuration means a new engine.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..durations import to_seconds
from ..errors import ConfigurationError


class Environment(str, Enum):
    """Runtime environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class CacheBackend(str, Enum):
    """Supported cache backends."""

    FILE = "file"
    REDIS = "redis"
    REDIS_CLUSTER = "redis_cluster"


class FailoverPolicy(str, Enum):
    """Read failover policy for Redis Cluster."""

    NONE = "none"
    ERROR = "error"
    DISTRIBUTE = "distribute"
    DISTRIBUTE_SLAVES = "distribute_slaves"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EngineConfig(BaseModel):
    """Options shared by every engine."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    prefix: str = Field(default="cache_", description="Prefix prepended to every normalized key")
    duration: int = Field(default=3600, ge=0, description="Default TTL in seconds (0 = no expiry)")
    groups: tuple[str, ...] = Field(default=(), description="Group names for bulk invalidation")

    @field_validator("duration", mode="before")
    @classmethod
    def parse_duration(cls, v: Any) -> int:
        """Accept seconds, numeric strings, timedeltas and relative expressions."""
        try:
            return to_seconds(v)
        except ConfigurationError as e:
            raise ValueError(e.message) from e

    @field_validator("groups", mode="before")
    @classmethod
    def coerce_groups(cls, v: Any) -> Any:
        """A single group name is shorthand for a one-element list."""
        if v is None:
            return ()
        if isinstance(v, str):
            return (v,) if v else ()
        return tuple(v)


class FileEngineConfig(EngineConfig):
    """Filesystem engine configuration."""

    backend: Literal[CacheBackend.FILE] = CacheBackend.FILE
    path: str = Field(default="./cache", description="Root directory for cache files")
    lock: bool = Field(default=False, description="Use flock around reads and writes")
    serialize: bool = Field(default=True, description="Encode values with the codec")
    mask: int = Field(default=0o664, ge=0, le=0o777, description="Mode for newly created files")
    auto_create: bool = Field(default=True, description="Create the root directory on initialize")

    @field_validator("mask", mode="before")
    @classmethod
    def parse_mask(cls, v: Any) -> Any:
        """Octal strings such as '0664' are read as octal."""
        if isinstance(v, str):
            return int(v, 8)
        return v


class RedisEngineConfig(EngineConfig):
    """Single-node Redis engine configuration."""

    backend: Literal[CacheBackend.REDIS] = CacheBackend.REDIS
    server: str = Field(default="127.0.0.1", description="Redis host")
    port: int = Field(default=6379, ge=1, le=65535, description="Redis port")
    password: str | None = Field(default=None, description="AUTH password")
    database: int = Field(default=0, ge=0, description="Database number to SELECT")
    timeout: float = Field(default=0, ge=0, description="Socket timeout in seconds (0 = none)")
    persistent: bool = Field(default=True, description="Share one process-wide connection")
    unix_socket: str | None = Field(default=None, description="Unix socket path, overrides host/port")


class RedisClusterEngineConfig(EngineConfig):
    """Redis Cluster engine configuration."""

    backend: Literal[CacheBackend.REDIS_CLUSTER] = CacheBackend.REDIS_CLUSTER
    seeds: tuple[str, ...] = Field(default=("127.0.0.1:7000",), min_length=1, description="host:port seed nodes")
    timeout: float = Field(default=0, ge=0, description="Connect timeout in seconds (0 = none)")
    read_timeout: float = Field(default=0, ge=0, description="Read timeout in seconds (0 = none)")
    persistent: bool = Field(default=True, description="Share one process-wide cluster client")
    password: str | None = Field(default=None, description="AUTH password")
    database: int = Field(default=0, ge=0, description="Must be 0 for Redis Cluster")
    failover: FailoverPolicy = Field(default=FailoverPolicy.NONE, description="Read failover policy")

    @field_validator("seeds", mode="before")
    @classmethod
    def coerce_seeds(cls, v: Any) -> Any:
        """Accept a comma separated string of seeds."""
        if isinstance(v, str):
            return tuple(s.strip() for s in v.split(",") if s.strip())
        return v

    @field_validator("seeds")
    @classmethod
    def validate_seeds(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Every seed must be host:port."""
        for seed in v:
            host, _, port = seed.rpartition(":")
            if not host or not port.isdigit():
                raise ValueError(f"Seed must be 'host:port', got {seed!r}")
        return v

    def startup_nodes(self) -> list[tuple[str, int]]:
        """Seeds as (host, port) pairs."""
        nodes = []
        for seed in self.seeds:
            host, _, port = seed.rpartition(":")
            nodes.append((host, int(port)))
        return nodes


AnyEngineConfig = FileEngineConfig | RedisEngineConfig | RedisClusterEngineConfig


class Settings(BaseModel):
    """Root configuration loaded from the environment."""

    environment: Environment = Field(default=Environment.DEVELOPMENT, description="Runtime environment")
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    engine: AnyEngineConfig = Field(default_factory=FileEngineConfig, discriminator="backend")

    model_config = ConfigDict(frozen=True)
