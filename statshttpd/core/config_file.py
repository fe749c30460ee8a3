"""Read-only, typed view over the operator's YAML configuration file.

Keys are dotted paths (``service.port``, ``relational.host``). Lookups fall back
to the key names used by older statshttpd deployments (``statshttpd.port``,
``pooldb.host``, ``redis.concurrency`` ...) when the canonical key is absent, so
existing config files keep working after conversion to YAML.

Loading and typed lookups return ``ConfigError`` values instead of raising;
callers decide how a missing or malformed value affects startup.
"""

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from statshttpd.core.types import ConfigError

logger = logging.getLogger(__name__)

_ENV_PATTERN = r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}"
_TRUE_STRINGS = frozenset({"true", "yes", "on", "1"})
_FALSE_STRINGS = frozenset({"false", "no", "off", "0"})

_SECTION_ALIASES = {
    "relational": "pooldb",
    "cache": "redis",
}
_KEY_ALIASES = {
    "service.use_relational": "statshttpd.use_mysql",
    "service.use_cache": "statshttpd.use_redis",
    "service.bus_brokers": "kafka.brokers",
    "service.bind_ip": "statshttpd.ip",
    "service.port": "statshttpd.port",
    "service.flush_interval": "statshttpd.flush_db_interval",
    "service.last_flush_time_marker": "statshttpd.file_last_flush_time",
}

_MISSING: Any = object()


def expand_env_vars(value: Any) -> Any:
    """Recursively expand ``${VAR_NAME}`` placeholders from the environment.

    Expanded values stay strings; the typed lookups convert them. Unset
    variables keep their placeholder and log a warning.
    """

    if isinstance(value, str):

        def replacer(match: re.Match[str]) -> str:
            var_name = match.group(1)
            env_value = os.getenv(var_name)
            if env_value is None:
                logger.warning("config_env_var_unset", extra={"variable": var_name})
                return match.group(0)
            return env_value

        return re.sub(_ENV_PATTERN, replacer, value)

    if isinstance(value, dict):
        return {key: expand_env_vars(item) for key, item in value.items()}

    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]

    return value


def load_configuration(path: str | Path) -> "ConfigurationView | ConfigError":
    """Read and parse the YAML file at ``path``."""

    source = str(path)
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        return ConfigError(f"I/O error while reading file: {exc.strerror or exc}", path=source)

    try:
        data = yaml.safe_load(text)
    except yaml.MarkedYAMLError as exc:
        mark = exc.problem_mark
        return ConfigError(
            f"parse error: {exc.problem or exc}",
            path=source,
            line=mark.line + 1 if mark is not None else None,
            column=mark.column + 1 if mark is not None else None,
        )
    except yaml.YAMLError as exc:
        return ConfigError(f"parse error: {exc}", path=source)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        return ConfigError("top level of the config file must be a mapping", path=source)

    return ConfigurationView(expand_env_vars(data), path=source)


class ConfigurationView:
    """Typed lookups over a parsed configuration mapping."""

    def __init__(self, data: Mapping[str, Any], path: str | None = None) -> None:
        self._data = data
        self.path = path

    def has(self, key: str) -> bool:
        return self._find(key)[1] is not _MISSING

    def get(self, key: str, default: Any = None) -> Any:
        value = self._find(key)[1]
        return default if value is _MISSING else value

    def get_bool(self, key: str, default: Any = _MISSING) -> bool | ConfigError:
        found_key, value = self._find(key)
        if value is _MISSING:
            return self._default_or_missing(key, default)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
        return self._type_error(found_key, "a boolean", value)

    def get_int(self, key: str, default: Any = _MISSING) -> int | ConfigError:
        found_key, value = self._find(key)
        if value is _MISSING:
            return self._default_or_missing(key, default)
        if isinstance(value, bool):
            return self._type_error(found_key, "an integer", value)
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                pass
        return self._type_error(found_key, "an integer", value)

    def get_str(self, key: str, default: Any = _MISSING, *, strict: bool = False) -> str | ConfigError:
        """Return a string; unquoted integers are accepted unless ``strict``.

        Use ``strict`` for credentials: YAML reads ``0042`` as the integer 34,
        so rendering a number back to text would not give the operator's value.
        """

        found_key, value = self._find(key)
        if value is _MISSING:
            return self._default_or_missing(key, default)
        if isinstance(value, str):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            if strict:
                return ConfigError("expected a quoted string, got int", key=found_key, path=self.path)
            return str(value)
        return self._type_error(found_key, "a string", value)

    def get_duration(self, key: str, default: Any = _MISSING) -> float | ConfigError:
        """Return a duration in seconds."""

        found_key, value = self._find(key)
        if value is _MISSING:
            return self._default_or_missing(key, default)
        if isinstance(value, bool):
            return self._type_error(found_key, "a number of seconds", value)
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                pass
        return self._type_error(found_key, "a number of seconds", value)

    def error(self, key: str, message: str) -> ConfigError:
        """Build a ``ConfigError`` for ``key`` carrying this view's file path."""

        found_key = self._find(key)[0]
        return ConfigError(message, key=found_key, path=self.path)

    def _find(self, key: str) -> tuple[str, Any]:
        for candidate in self._candidates(key):
            value = self._walk(candidate)
            if value is not _MISSING:
                return candidate, value
        return key, _MISSING

    def _candidates(self, key: str) -> list[str]:
        candidates = [key]
        legacy = _KEY_ALIASES.get(key)
        if legacy is not None:
            candidates.append(legacy)
        section, _, rest = key.partition(".")
        legacy_section = _SECTION_ALIASES.get(section)
        if legacy_section is not None and rest:
            candidates.append(f"{legacy_section}.{rest}")
        return candidates

    def _walk(self, dotted: str) -> Any:
        node: Any = self._data
        for part in dotted.split("."):
            if not isinstance(node, Mapping) or part not in node:
                return _MISSING
            node = node[part]
        if node is None:
            return _MISSING
        return node

    def _default_or_missing(self, key: str, default: Any) -> Any:
        if default is _MISSING:
            return ConfigError("required setting is missing", key=key, path=self.path)
        return default

    def _type_error(self, key: str, expected: str, value: Any) -> ConfigError:
        return ConfigError(
            f"expected {expected}, got {type(value).__name__}",
            key=key,
            path=self.path,
        )
