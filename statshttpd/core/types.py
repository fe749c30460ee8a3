"""Shared types that keep the bootstrap, selector and service interfaces explicit."""

from dataclasses import dataclass
from enum import IntFlag
from typing import Protocol

DEFAULT_RELATIONAL_PORT = 3306
DEFAULT_CACHE_PORT = 6379
DEFAULT_BIND_PORT = 8080
DEFAULT_FLUSH_INTERVAL_S = 20.0


class PublishPolicy(IntFlag):
    """Which statistic updates the service publishes on the cache's pub/sub channels."""

    NONE = 0
    USER_UPDATE = 1
    WORKER_UPDATE = 2


class IndexPolicy(IntFlag):
    """Which statistic fields the service maintains sorted indexes for in the cache."""

    NONE = 0
    ACCEPT_1M = 1
    ACCEPT_5M = 2
    ACCEPT_15M = 4
    REJECT_15M = 8
    ACCEPT_1H = 16
    REJECT_1H = 32
    ACCEPT_COUNT = 64
    LAST_SHARE_IP = 128
    LAST_SHARE_TIME = 256
    WORKER_NAME = 512
    MINER_AGENT = 1024


@dataclass(frozen=True, slots=True)
class ConfigError:
    """A configuration problem found while loading or resolving the config file."""

    message: str
    key: str | None = None
    path: str | None = None
    line: int | None = None
    column: int | None = None

    def describe(self) -> str:
        """Return an operator-facing one-line description with location context."""

        location = self.path or "<config>"
        if self.line is not None:
            location = f"{location}:{self.line}"
            if self.column is not None:
                location = f"{location}:{self.column}"
        if self.key:
            return f"{location}: {self.key}: {self.message}"
        return f"{location}: {self.message}"


@dataclass(frozen=True, slots=True)
class RelationalDescriptor:
    """Resolved connection parameters for the relational store."""

    host: str
    username: str
    password: str
    dbname: str
    port: int = DEFAULT_RELATIONAL_PORT

    def __repr__(self) -> str:
        return (
            f"RelationalDescriptor(host={self.host!r}, port={self.port}, "
            f"username={self.username!r}, dbname={self.dbname!r})"
        )


@dataclass(frozen=True, slots=True)
class CacheDescriptor:
    """Resolved connection parameters for the cache / pub-sub store."""

    host: str
    password: str
    port: int = DEFAULT_CACHE_PORT
    key_prefix: str = ""
    key_expire: int = 0
    publish_policy: PublishPolicy = PublishPolicy.NONE
    index_policy: IndexPolicy = IndexPolicy.NONE
    concurrency: int = 1

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            object.__setattr__(self, "concurrency", 1)

    def __repr__(self) -> str:
        return (
            f"CacheDescriptor(host={self.host!r}, port={self.port}, "
            f"key_prefix={self.key_prefix!r}, key_expire={self.key_expire}, "
            f"publish_policy={self.publish_policy!r}, index_policy={self.index_policy!r}, "
            f"concurrency={self.concurrency})"
        )


@dataclass(frozen=True, slots=True)
class BackendSelection:
    """Which optional backends are active; ``None`` means the backend is disabled."""

    relational: RelationalDescriptor | None = None
    cache: CacheDescriptor | None = None


@dataclass(frozen=True, slots=True)
class ServiceConstructionRequest:
    """Fully resolved parameters handed to the aggregation service exactly once."""

    bus_brokers: str
    bind_ip: str
    bind_port: int = DEFAULT_BIND_PORT
    relational: RelationalDescriptor | None = None
    cache: CacheDescriptor | None = None
    flush_interval: float = DEFAULT_FLUSH_INTERVAL_S
    last_flush_time_marker: str = ""


class AggregationService(Protocol):
    """Lifecycle contract the bootstrap drives."""

    def init(self) -> bool:
        """Prepare resources; ``False`` is fatal and ``run`` must not be called."""

    def run(self) -> None:
        """Block until a stop request has been observed and honored."""

    def stop(self) -> None:
        """Request cooperative shutdown; idempotent and safe from a signal handler."""

    def close(self) -> None:
        """Release everything ``init`` acquired; called once by the bootstrap."""
