"""Map configuration onto backend descriptors and the service construction request.

Everything here is pure: no sockets are opened and nothing is logged, so a bad
configuration is reported before any connection is attempted. Each step returns
either its result or a ``ConfigError``.
"""

from typing import TypeVar

from statshttpd.core.config_file import ConfigurationView
from statshttpd.core.types import (
    DEFAULT_BIND_PORT,
    DEFAULT_CACHE_PORT,
    DEFAULT_FLUSH_INTERVAL_S,
    DEFAULT_RELATIONAL_PORT,
    BackendSelection,
    CacheDescriptor,
    ConfigError,
    IndexPolicy,
    PublishPolicy,
    RelationalDescriptor,
    ServiceConstructionRequest,
)

_MAX_PORT = 65535

FlagT = TypeVar("FlagT", PublishPolicy, IndexPolicy)


def select_backends(view: ConfigurationView) -> BackendSelection | ConfigError:
    """Resolve the enabled backends; disabled backends are left as ``None``."""

    use_relational = view.get_bool("service.use_relational", True)
    if isinstance(use_relational, ConfigError):
        return use_relational
    use_cache = view.get_bool("service.use_cache", False)
    if isinstance(use_cache, ConfigError):
        return use_cache

    relational: RelationalDescriptor | None = None
    if use_relational:
        resolved_relational = resolve_relational(view)
        if isinstance(resolved_relational, ConfigError):
            return resolved_relational
        relational = resolved_relational

    cache: CacheDescriptor | None = None
    if use_cache:
        resolved_cache = resolve_cache(view)
        if isinstance(resolved_cache, ConfigError):
            return resolved_cache
        cache = resolved_cache

    return BackendSelection(relational=relational, cache=cache)


def resolve_relational(view: ConfigurationView) -> RelationalDescriptor | ConfigError:
    host = _required_str(view, "relational.host")
    if isinstance(host, ConfigError):
        return host
    port = _port(view, "relational.port", DEFAULT_RELATIONAL_PORT)
    if isinstance(port, ConfigError):
        return port
    username = _required_str(view, "relational.username", strict=True)
    if isinstance(username, ConfigError):
        return username
    password = view.get_str("relational.password", strict=True)
    if isinstance(password, ConfigError):
        return password
    dbname = _required_str(view, "relational.dbname")
    if isinstance(dbname, ConfigError):
        return dbname

    return RelationalDescriptor(
        host=host,
        port=port,
        username=username,
        password=password,
        dbname=dbname,
    )


def resolve_cache(view: ConfigurationView) -> CacheDescriptor | ConfigError:
    host = _required_str(view, "cache.host")
    if isinstance(host, ConfigError):
        return host
    port = _port(view, "cache.port", DEFAULT_CACHE_PORT)
    if isinstance(port, ConfigError):
        return port
    password = view.get_str("cache.password", strict=True)
    if isinstance(password, ConfigError):
        return password
    key_prefix = view.get_str("cache.key_prefix", "")
    if isinstance(key_prefix, ConfigError):
        return key_prefix
    key_expire = view.get_int("cache.key_expire", 0)
    if isinstance(key_expire, ConfigError):
        return key_expire
    if key_expire < 0:
        return view.error("cache.key_expire", "must be zero (never expire) or a positive number of seconds")
    publish_policy = _policy(view, "cache.publish_policy", PublishPolicy)
    if isinstance(publish_policy, ConfigError):
        return publish_policy
    index_policy = _policy(view, "cache.index_policy", IndexPolicy)
    if isinstance(index_policy, ConfigError):
        return index_policy
    concurrency = view.get_int("cache.concurrency", 1)
    if isinstance(concurrency, ConfigError):
        return concurrency

    return CacheDescriptor(
        host=host,
        port=port,
        password=password,
        key_prefix=key_prefix,
        key_expire=key_expire,
        publish_policy=publish_policy,
        index_policy=index_policy,
        concurrency=max(1, concurrency),
    )


def build_request(
    view: ConfigurationView,
    selection: BackendSelection,
) -> ServiceConstructionRequest | ConfigError:
    """Assemble the single construction request for the aggregation service."""

    bus_brokers = _required_str(view, "service.bus_brokers")
    if isinstance(bus_brokers, ConfigError):
        return bus_brokers
    bind_ip = _required_str(view, "service.bind_ip")
    if isinstance(bind_ip, ConfigError):
        return bind_ip
    bind_port = _port(view, "service.port", DEFAULT_BIND_PORT)
    if isinstance(bind_port, ConfigError):
        return bind_port
    flush_interval = view.get_duration("service.flush_interval", DEFAULT_FLUSH_INTERVAL_S)
    if isinstance(flush_interval, ConfigError):
        return flush_interval
    if flush_interval <= 0:
        return view.error("service.flush_interval", "must be greater than zero seconds")
    marker = view.get_str("service.last_flush_time_marker", "")
    if isinstance(marker, ConfigError):
        return marker

    return ServiceConstructionRequest(
        bus_brokers=bus_brokers,
        bind_ip=bind_ip,
        bind_port=bind_port,
        relational=selection.relational,
        cache=selection.cache,
        flush_interval=flush_interval,
        last_flush_time_marker=marker.strip(),
    )


def _required_str(view: ConfigurationView, key: str, *, strict: bool = False) -> str | ConfigError:
    value = view.get_str(key, strict=strict)
    if isinstance(value, ConfigError):
        return value
    value = value.strip()
    if not value:
        return view.error(key, "must not be empty")
    return value


def _port(view: ConfigurationView, key: str, default: int) -> int | ConfigError:
    port = view.get_int(key, default)
    if isinstance(port, ConfigError):
        return port
    if not 1 <= port <= _MAX_PORT:
        return view.error(key, f"port must be between 1 and {_MAX_PORT}")
    return port


def _policy(view: ConfigurationView, key: str, flag_type: type[FlagT]) -> FlagT | ConfigError:
    """Accept an integer bit mask, a flag name, or a list of flag names."""

    raw = view.get(key)
    if raw is None:
        return flag_type(0)

    known_bits = 0
    for member in flag_type.__members__.values():
        known_bits |= member.value

    if isinstance(raw, bool):
        return view.error(key, "expected a bit mask or a list of policy names")

    if isinstance(raw, str):
        text = raw.strip()
        if text.isdigit():
            raw = int(text)
        else:
            raw = [part for part in text.split(",") if part.strip()]

    if isinstance(raw, int):
        if raw < 0 or raw & ~known_bits:
            return view.error(key, f"unknown policy bits in {raw}")
        return flag_type(raw)

    if isinstance(raw, list):
        combined = flag_type(0)
        for item in raw:
            name = str(item).strip().upper()
            member = flag_type.__members__.get(name)
            if member is None:
                choices = ", ".join(choice.lower() for choice in flag_type.__members__)
                return view.error(key, f"unknown policy {item!r}; expected one of: {choices}")
            combined |= member
        return combined

    return view.error(key, "expected a bit mask or a list of policy names")
