"""Shared fixtures: config file writer and a recording fake aggregation service."""

import copy
import time
from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

from statshttpd.core.types import ServiceConstructionRequest

BASE_CONFIG: dict[str, Any] = {
    "service": {
        "use_relational": False,
        "use_cache": False,
        "bus_brokers": "127.0.0.1:9092",
        "bind_ip": "127.0.0.1",
    },
}


@pytest.fixture
def base_config() -> dict[str, Any]:
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[..., Path]:
    """Return a helper that dumps a mapping (or raw text) to a YAML file."""

    def _write(data: dict[str, Any] | str, name: str = "statshttpd.yaml") -> Path:
        path = tmp_path / name
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        else:
            path.write_text(yaml.safe_dump(data), encoding="utf-8")
        return path

    return _write


class FakeService:
    """Lifecycle double that records every call the bootstrap makes."""

    def __init__(
        self,
        request: ServiceConstructionRequest,
        *,
        init_result: bool = True,
        run_hook: Callable[["FakeService"], None] | None = None,
        run_error: Exception | None = None,
        wait_for_stop: bool = False,
    ) -> None:
        self.request = request
        self.calls: list[str] = []
        self.stop_calls = 0
        self.init_result = init_result
        self.run_hook = run_hook
        self.run_error = run_error
        self.wait_for_stop = wait_for_stop
        self.stopped = False

    def init(self) -> bool:
        self.calls.append("init")
        return self.init_result

    def run(self) -> None:
        self.calls.append("run")
        if self.run_hook is not None:
            self.run_hook(self)
        if self.run_error is not None:
            raise self.run_error
        deadline = time.monotonic() + 5.0
        while self.wait_for_stop and not self.stopped:
            if time.monotonic() > deadline:
                raise AssertionError("stop was never requested")
            time.sleep(0.01)

    def stop(self) -> None:
        self.stop_calls += 1
        self.stopped = True

    def close(self) -> None:
        self.calls.append("close")
