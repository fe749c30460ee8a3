"""Configuration file loading, typed lookups and legacy key fallbacks."""

from pathlib import Path

import pytest

from statshttpd.core.config_file import ConfigurationView, expand_env_vars, load_configuration
from statshttpd.core.types import ConfigError


def test_load_returns_view_for_valid_yaml(write_config, base_config) -> None:
    """A well-formed file yields a view bound to its path."""

    path = write_config(base_config)
    view = load_configuration(path)

    assert isinstance(view, ConfigurationView)
    assert view.path == str(path)
    assert view.get_str("service.bind_ip") == "127.0.0.1"


def test_missing_file_reports_io_error(tmp_path: Path) -> None:
    """An unreadable file is a config error carrying the path."""

    result = load_configuration(tmp_path / "absent.yaml")

    assert isinstance(result, ConfigError)
    assert "I/O error" in result.message
    assert result.path == str(tmp_path / "absent.yaml")


def test_parse_error_reports_line_and_column(write_config) -> None:
    """YAML syntax errors keep the location for the operator."""

    path = write_config("service:\n  bind_ip: 127.0.0.1\n  port: [8080\n")
    result = load_configuration(path)

    assert isinstance(result, ConfigError)
    assert result.message.startswith("parse error")
    assert result.line is not None and result.line >= 3
    assert result.describe().startswith(f"{path}:{result.line}")


def test_non_mapping_top_level_is_rejected(write_config) -> None:
    """A YAML list at top level is not a configuration."""

    result = load_configuration(write_config("- a\n- b\n"))

    assert isinstance(result, ConfigError)
    assert "mapping" in result.message


def test_empty_file_is_an_empty_view(write_config) -> None:
    """An empty file loads, and every required key is then reported missing."""

    view = load_configuration(write_config(""))

    assert isinstance(view, ConfigurationView)
    missing = view.get_str("service.bind_ip")
    assert isinstance(missing, ConfigError)
    assert missing.key == "service.bind_ip"


def test_legacy_keys_are_used_when_canonical_keys_are_absent() -> None:
    """Old statshttpd/pooldb/redis key names still resolve."""

    view = ConfigurationView(
        {
            "statshttpd": {"use_redis": True, "port": 9090, "ip": "0.0.0.0"},
            "kafka": {"brokers": "k1:9092"},
            "pooldb": {"host": "db.local"},
            "redis": {"concurrency": 3},
        }
    )

    assert view.get_bool("service.use_cache", False) is True
    assert view.get_int("service.port", 8080) == 9090
    assert view.get_str("service.bind_ip") == "0.0.0.0"
    assert view.get_str("service.bus_brokers") == "k1:9092"
    assert view.get_str("relational.host") == "db.local"
    assert view.get_int("cache.concurrency", 1) == 3


def test_canonical_key_wins_over_legacy_key() -> None:
    """When both spellings exist the canonical one is used."""

    view = ConfigurationView({"service": {"port": 8181}, "statshttpd": {"port": 9090}})

    assert view.get_int("service.port", 8080) == 8181


def test_typed_lookups_reject_wrong_types() -> None:
    """Wrong value types are errors, not silent defaults."""

    view = ConfigurationView({"service": {"use_cache": "maybe", "port": True, "bind_ip": ["x"]}})

    bool_error = view.get_bool("service.use_cache", False)
    int_error = view.get_int("service.port", 8080)
    str_error = view.get_str("service.bind_ip")

    assert isinstance(bool_error, ConfigError) and bool_error.key == "service.use_cache"
    assert isinstance(int_error, ConfigError) and "integer" in int_error.message
    assert isinstance(str_error, ConfigError) and "string" in str_error.message


def test_typed_lookups_accept_strings_from_environment() -> None:
    """Values produced by env expansion are coerced where unambiguous."""

    view = ConfigurationView({"service": {"use_cache": "yes", "port": "8081", "flush_interval": "2.5"}})

    assert view.get_bool("service.use_cache", False) is True
    assert view.get_int("service.port", 8080) == 8081
    assert view.get_duration("service.flush_interval", 20.0) == 2.5


def test_strict_string_rejects_unquoted_numbers() -> None:
    """Numbers pass as text for plain settings but not for strict lookups."""

    view = ConfigurationView({"cache": {"key_prefix": 7, "password": 34}}, path="statshttpd.yaml")

    assert view.get_str("cache.key_prefix") == "7"
    error = view.get_str("cache.password", strict=True)
    assert isinstance(error, ConfigError)
    assert error.key == "cache.password"
    assert "quoted string" in error.message


def test_numeric_looking_env_values_stay_text(monkeypatch: pytest.MonkeyPatch, write_config) -> None:
    """Expansion does not reinterpret digits, so leading zeros and trailing decimals survive."""

    monkeypatch.setenv("STATS_DB_PASSWORD", "007")
    monkeypatch.setenv("STATS_REDIS_PASSWORD", "1.10")
    monkeypatch.setenv("STATS_PORT", "9091")
    path = write_config(
        {
            "service": {"port": "${STATS_PORT}"},
            "relational": {"password": "${STATS_DB_PASSWORD}"},
            "cache": {"password": "${STATS_REDIS_PASSWORD}"},
        }
    )

    view = load_configuration(path)

    assert isinstance(view, ConfigurationView)
    assert view.get_str("relational.password", strict=True) == "007"
    assert view.get_str("cache.password", strict=True) == "1.10"
    assert view.get_int("service.port", 8080) == 9091


def test_null_value_counts_as_missing() -> None:
    """A key present with an empty value falls back to the default."""

    view = ConfigurationView({"service": {"port": None}})

    assert view.get_int("service.port", 8080) == 8080
    assert not view.has("service.port")


def test_env_vars_are_expanded(monkeypatch: pytest.MonkeyPatch, write_config) -> None:
    """${VAR} placeholders resolve from the environment when loading."""

    monkeypatch.setenv("STATS_DB_PASSWORD", "s3cret")
    monkeypatch.setenv("STATS_PORT", "8088")
    monkeypatch.delenv("STATS_UNSET", raising=False)
    path = write_config(
        {
            "service": {"port": "${STATS_PORT}", "bind_ip": "${STATS_UNSET}"},
            "relational": {"password": "pw-${STATS_DB_PASSWORD}"},
        }
    )

    view = load_configuration(path)

    assert isinstance(view, ConfigurationView)
    assert view.get_int("service.port", 8080) == 8088
    assert view.get_str("relational.password") == "pw-s3cret"
    assert view.get_str("service.bind_ip") == "${STATS_UNSET}"


def test_expand_env_vars_walks_lists(monkeypatch: pytest.MonkeyPatch) -> None:
    """Nested lists are expanded too."""

    monkeypatch.setenv("STATS_POLICY", "user_update")

    assert expand_env_vars({"policies": ["${STATS_POLICY}", "worker_update"]}) == {
        "policies": ["user_update", "worker_update"]
    }
