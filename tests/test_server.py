"""StatsServer lifecycle: backend wiring, flush marker, cooperative stop."""

import socket
import threading
import time
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest
import redis
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from statshttpd.core.config import Settings
from statshttpd.core.types import CacheDescriptor, RelationalDescriptor, ServiceConstructionRequest
from statshttpd.services.statshttpd.api import create_app
from statshttpd.services.statshttpd.server import ServiceError, StatsServer

RELATIONAL = RelationalDescriptor(host="db.local", username="pool", password="pw", dbname="db")
CACHE = CacheDescriptor(host="cache.local", password="", concurrency=4)


class FakeStore:
    """Stands in for MySQLStore / RedisStore and logs open/close order."""

    def __init__(self, name: str, events: list[str], error: Exception | None = None) -> None:
        self.name = name
        self.events = events
        self.error = error
        self.alive = True

    def open(self) -> None:
        if self.error is not None:
            raise self.error
        self.events.append(f"open:{self.name}")

    def ping(self) -> bool:
        return self.alive

    def close(self) -> None:
        self.events.append(f"close:{self.name}")


def _request(**overrides) -> ServiceConstructionRequest:
    values = {"bus_brokers": "127.0.0.1:9092", "bind_ip": "127.0.0.1", "bind_port": 8080}
    values.update(overrides)
    return ServiceConstructionRequest(**values)


def _server(request: ServiceConstructionRequest, events: list[str], **errors: Exception) -> StatsServer:
    return StatsServer(
        request,
        Settings(),
        relational_store_factory=lambda _d: FakeStore("mysql", events, errors.get("mysql")),
        cache_store_factory=lambda _d: FakeStore("redis", events, errors.get("redis")),
    )


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_init_without_backends_opens_nothing() -> None:
    """With no descriptors no store is created."""

    events: list[str] = []
    server = _server(_request(), events)

    assert server.init() is True
    assert events == []
    assert server.relational is None and server.cache is None


def test_init_opens_and_close_releases_backends_in_reverse_order() -> None:
    """Backends open relational-first and close cache-first, once."""

    events: list[str] = []
    server = _server(_request(relational=RELATIONAL, cache=CACHE), events)

    assert server.init() is True
    server.close()
    server.close()

    assert events == ["open:mysql", "open:redis", "close:redis", "close:mysql"]


def test_health_reports_backend_pings() -> None:
    """/health pings each open backend and degrades when one stops answering."""

    stores: dict[str, FakeStore] = {}

    def store(name: str) -> Callable[[object], FakeStore]:
        def factory(_descriptor: object) -> FakeStore:
            stores[name] = FakeStore(name, [])
            return stores[name]

        return factory

    server = StatsServer(
        _request(relational=RELATIONAL, cache=CACHE),
        Settings(),
        relational_store_factory=store("mysql"),
        cache_store_factory=store("redis"),
    )
    assert server.init() is True
    client = TestClient(create_app(server.settings, server.flush_status, server.backend_status))

    assert client.get("/health").json() == {"status": "ok", "backends": {"mysql": True, "redis": True}}

    stores["redis"].alive = False
    assert client.get("/health").json() == {"status": "degraded", "backends": {"mysql": True, "redis": False}}

    server.close()
    assert server.backend_status() == {}


def test_relational_failure_fails_init_before_cache_opens() -> None:
    """A database that cannot be reached makes init return False."""

    events: list[str] = []
    error = OperationalError("SELECT 1", {}, Exception("refused"))
    server = _server(_request(relational=RELATIONAL, cache=CACHE), events, mysql=error)

    assert server.init() is False
    assert events == []


def test_cache_failure_fails_init_and_close_releases_relational() -> None:
    """When the cache fails after the database opened, close still releases the database."""

    events: list[str] = []
    server = _server(
        _request(relational=RELATIONAL, cache=CACHE),
        events,
        redis=redis.ConnectionError("refused"),
    )

    assert server.init() is False
    server.close()

    assert events == ["open:mysql", "close:mysql"]


def test_flush_writes_marker_atomically(tmp_path: Path) -> None:
    """The marker holds unix seconds and no temp file is left behind."""

    marker = tmp_path / "state" / "last_flush_time.txt"
    server = _server(_request(last_flush_time_marker=str(marker)), [])

    before = int(time.time())
    server.flush()

    stored = int(marker.read_text(encoding="utf-8").strip())
    assert before <= stored <= int(time.time())
    assert not (marker.parent / "last_flush_time.txt.tmp").exists()
    assert server.flush_count == 1
    assert server.flush_status()["last_flush_time"] is not None


def test_init_restores_last_flush_time(tmp_path: Path) -> None:
    """A previous marker is read back on init."""

    marker = tmp_path / "last_flush_time.txt"
    marker.write_text("1700000000\n", encoding="utf-8")
    server = _server(_request(last_flush_time_marker=str(marker)), [])

    assert server.init() is True
    assert server.last_flush_time is not None
    assert int(server.last_flush_time.timestamp()) == 1700000000


@pytest.mark.parametrize("content", ["", "yesterday"])
def test_unreadable_marker_starts_fresh(tmp_path: Path, content: str) -> None:
    """A corrupt marker is ignored rather than failing startup."""

    marker = tmp_path / "last_flush_time.txt"
    marker.write_text(content, encoding="utf-8")
    server = _server(_request(last_flush_time_marker=str(marker)), [])

    assert server.init() is True
    assert server.last_flush_time is None


def test_run_before_init_is_an_error() -> None:
    """run() needs a successful init()."""

    server = _server(_request(), [])

    with pytest.raises(ServiceError):
        server.run()


def test_stop_before_run_returns_without_serving(tmp_path: Path) -> None:
    """A stop that lands between init and run makes run return at once with a final flush."""

    marker = tmp_path / "last_flush_time.txt"
    server = _server(_request(last_flush_time_marker=str(marker)), [])
    assert server.init()

    server.stop()
    server.stop()
    server.run()

    assert server.stop_requested
    assert marker.exists()


def test_run_serves_http_until_stopped(tmp_path: Path) -> None:
    """The HTTP surface answers while running and run() returns after stop()."""

    port = _free_port()
    server = _server(_request(bind_port=port, flush_interval=60.0), [])
    assert server.init()
    errors: list[BaseException] = []

    def target() -> None:
        try:
            server.run()
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    try:
        deadline = time.monotonic() + 10.0
        response = None
        while time.monotonic() < deadline:
            try:
                response = httpx.get(f"http://127.0.0.1:{port}/health", timeout=1.0)
                break
            except httpx.TransportError:
                time.sleep(0.05)
        assert response is not None and response.status_code == 200
        assert response.json() == {"status": "ok", "backends": {}}
    finally:
        server.stop()
        thread.join(timeout=10.0)

    assert not thread.is_alive()
    assert errors == []
    assert server.flush_count == 1


def test_run_reports_port_conflict_as_service_error() -> None:
    """An occupied port surfaces as ServiceError rather than SystemExit."""

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        port = blocker.getsockname()[1]
        server = _server(_request(bind_port=port), [])
        assert server.init()

        with pytest.raises(ServiceError):
            server.run()
