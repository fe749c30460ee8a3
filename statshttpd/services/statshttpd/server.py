"""Statistics HTTP daemon driven through the init/run/stop/close lifecycle.

``init`` restores the last flush time and opens the enabled backends, ``run``
serves HTTP with uvicorn while a background thread flushes on the configured
interval, and ``stop`` only flips flags so it can be called from a signal
handler.
"""

import logging
import os
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import redis
import uvicorn
from sqlalchemy.exc import SQLAlchemyError

from statshttpd.core.config import Settings, get_settings
from statshttpd.core.time_utils import from_unix_seconds, to_unix_seconds, utc_now
from statshttpd.core.types import CacheDescriptor, RelationalDescriptor, ServiceConstructionRequest
from statshttpd.services.statshttpd.api import create_app
from statshttpd.storage.mysql import MySQLStore
from statshttpd.storage.redis import RedisStore

_POLL_SLEEP_S = 0.5


class ServiceError(RuntimeError):
    """The service could not keep running, e.g. the HTTP port could not be bound."""


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to the process supervisor."""

    def install_signal_handlers(self) -> None:
        return None

    @contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class StatsServer:
    """Aggregation service built from one ``ServiceConstructionRequest``."""

    def __init__(
        self,
        request: ServiceConstructionRequest,
        settings: Settings | None = None,
        *,
        relational_store_factory: Callable[[RelationalDescriptor], MySQLStore] = MySQLStore,
        cache_store_factory: Callable[[CacheDescriptor], RedisStore] = RedisStore,
    ) -> None:
        self.request = request
        self.settings = settings if settings is not None else get_settings()
        self.logger = logging.getLogger(__name__)
        self._relational_store_factory = relational_store_factory
        self._cache_store_factory = cache_store_factory

        self.relational: MySQLStore | None = None
        self.cache: RedisStore | None = None
        self.last_flush_time: datetime | None = None
        self.flush_count = 0

        self._server: _EmbeddedServer | None = None
        self._stop_requested = False
        self._flush_wakeup = threading.Event()
        self._flush_thread: threading.Thread | None = None

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def init(self) -> bool:
        """Open backends and prepare the HTTP server; ``False`` means do not run."""

        self.last_flush_time = self._read_marker()

        if self.request.relational is not None:
            store = self._relational_store_factory(self.request.relational)
            try:
                store.open()
            except (SQLAlchemyError, OSError) as exc:
                self.logger.error(
                    "statshttpd_mysql_connect_failed",
                    extra={"host": self.request.relational.host, "error": str(exc)},
                )
                return False
            self.relational = store

        if self.request.cache is not None:
            cache = self._cache_store_factory(self.request.cache)
            try:
                cache.open()
            except (redis.RedisError, OSError) as exc:
                self.logger.error(
                    "statshttpd_redis_connect_failed",
                    extra={"host": self.request.cache.host, "error": str(exc)},
                )
                return False
            self.cache = cache

        app = create_app(self.settings, self.flush_status, self.backend_status)
        config = uvicorn.Config(
            app,
            host=self.request.bind_ip,
            port=self.request.bind_port,
            log_config=None,
            access_log=False,
            lifespan="on",
        )
        self._server = _EmbeddedServer(config)
        self.logger.info(
            "statshttpd_initialized",
            extra={
                "bind_ip": self.request.bind_ip,
                "bind_port": self.request.bind_port,
                "bus_brokers": self.request.bus_brokers,
                "mysql": self.relational is not None,
                "redis": self.cache is not None,
                "last_flush_time": self.last_flush_time.isoformat() if self.last_flush_time else None,
            },
        )
        return True

    def run(self) -> None:
        """Serve until ``stop`` is requested, then flush one last time."""

        server = self._server
        if server is None:
            raise ServiceError("run() called without a successful init()")

        stopped_before_start = self._stop_requested
        self._flush_thread = threading.Thread(
            target=self._flush_loop,
            name="statshttpd-flush",
            daemon=True,
        )
        self._flush_thread.start()
        self.logger.info("statshttpd_running", extra={"flush_interval_s": self.request.flush_interval})

        try:
            if not stopped_before_start:
                server.run()
        except SystemExit as exc:
            raise ServiceError(f"http server exited during startup (code {exc.code})") from exc
        finally:
            self._stop_requested = True
            self._flush_wakeup.set()
            self._flush_thread.join()
            self._flush_safely()

        if not stopped_before_start and not server.started:
            raise ServiceError(
                f"http server failed to start on {self.request.bind_ip}:{self.request.bind_port}"
            )
        self.logger.info("statshttpd_stopped", extra={"flush_count": self.flush_count})

    def stop(self) -> None:
        """Request shutdown; only assigns flags, safe to call from a signal handler."""

        self._stop_requested = True
        server = self._server
        if server is not None:
            server.should_exit = True

    def close(self) -> None:
        """Disconnect backends in reverse order of opening; safe to call repeatedly."""

        self._server = None
        if self.cache is not None:
            cache, self.cache = self.cache, None
            cache.close()
        if self.relational is not None:
            relational, self.relational = self.relational, None
            relational.close()

    def flush(self) -> None:
        """Record a flush and persist its time to the marker file; raises ``OSError``."""

        now = utc_now()
        if self.request.last_flush_time_marker:
            self._write_marker(now)
        self.last_flush_time = now
        self.flush_count += 1
        self.logger.debug("statshttpd_flushed", extra={"flush_time": now.isoformat()})

    def flush_status(self) -> dict[str, Any]:
        return {
            "flush_interval_s": self.request.flush_interval,
            "last_flush_time": self.last_flush_time.isoformat() if self.last_flush_time else None,
            "flush_count": self.flush_count,
        }

    def backend_status(self) -> dict[str, bool]:
        """Ping each open backend; keys are only present for enabled backends."""

        status: dict[str, bool] = {}
        relational, cache = self.relational, self.cache
        if relational is not None:
            status["mysql"] = relational.ping()
        if cache is not None:
            status["redis"] = cache.ping()
        return status

    def _flush_loop(self) -> None:
        next_due = time.monotonic() + self.request.flush_interval
        while not self._stop_requested:
            if self._flush_wakeup.wait(_POLL_SLEEP_S):
                break
            if time.monotonic() < next_due:
                continue
            next_due = time.monotonic() + self.request.flush_interval
            self._flush_safely()

    def _flush_safely(self) -> None:
        try:
            self.flush()
        except OSError as exc:
            self.logger.warning(
                "statshttpd_flush_marker_write_failed",
                extra={"path": self.request.last_flush_time_marker, "error": str(exc)},
            )

    def _read_marker(self) -> datetime | None:
        marker = self.request.last_flush_time_marker
        if not marker:
            return None

        path = Path(marker)
        if not path.exists():
            self.logger.info("statshttpd_flush_marker_missing", extra={"path": marker})
            return None

        try:
            raw = path.read_text(encoding="utf-8").strip()
            return from_unix_seconds(int(raw))
        except (OSError, ValueError, OverflowError) as exc:
            self.logger.warning(
                "statshttpd_flush_marker_unreadable",
                extra={"path": marker, "error": str(exc)},
            )
            return None

    def _write_marker(self, moment: datetime) -> None:
        path = Path(self.request.last_flush_time_marker)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f"{path.name}.tmp")
        tmp_path.write_text(f"{to_unix_seconds(moment)}\n", encoding="utf-8")
        os.replace(tmp_path, path)
