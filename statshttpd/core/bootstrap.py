"""Startup and lifecycle sequencing for the statistics daemon.

The configuration file is parsed first, so a malformed file fails before the
instance lock is touched. After that the lock gates everything: backends are
resolved and the service is constructed only while the lock is held, and the
lock is released only after the service has been closed.

    UNSTARTED -> LOCKED -> CONFIGURED -> CONSTRUCTED -> INITIALIZED
              -> RUNNING -> STOPPING -> TERMINATED

Any step may move to FAILED instead. Teardown always runs in reverse
acquisition order: detach the stop handle, close the service, restore the
signal handlers, release the lock.
"""

import logging
from collections.abc import Callable
from enum import Enum, IntEnum
from pathlib import Path

from statshttpd.core.backends import build_request, select_backends
from statshttpd.core.config_file import load_configuration
from statshttpd.core.instance_lock import InstanceLock
from statshttpd.core.shutdown import ShutdownController
from statshttpd.core.types import AggregationService, ConfigError, ServiceConstructionRequest

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[ServiceConstructionRequest], AggregationService]


class BootstrapState(str, Enum):
    UNSTARTED = "unstarted"
    LOCKED = "locked"
    CONFIGURED = "configured"
    CONSTRUCTED = "constructed"
    INITIALIZED = "initialized"
    RUNNING = "running"
    STOPPING = "stopping"
    TERMINATED = "terminated"
    FAILED = "failed"


class FailureReason(str, Enum):
    CONFIG = "config"
    LOCK_CONTENTION = "lock_contention"
    CONSTRUCTION = "construction"
    INIT = "init"
    RUN = "run"
    UNEXPECTED = "unexpected"


class ExitCode(IntEnum):
    OK = 0
    USAGE = 1
    CONFIG = 2
    LOCK_CONTENTION = 3
    SERVICE = 4
    UNEXPECTED = 5


_EXIT_CODES = {
    FailureReason.CONFIG: ExitCode.CONFIG,
    FailureReason.LOCK_CONTENTION: ExitCode.LOCK_CONTENTION,
    FailureReason.CONSTRUCTION: ExitCode.SERVICE,
    FailureReason.INIT: ExitCode.SERVICE,
    FailureReason.RUN: ExitCode.SERVICE,
    FailureReason.UNEXPECTED: ExitCode.UNEXPECTED,
}


class ServiceBootstrap:
    """Drive one aggregation service from configuration to clean shutdown, once."""

    def __init__(
        self,
        config_path: str | Path,
        service_factory: ServiceFactory,
        *,
        lock_factory: Callable[[str], InstanceLock] = InstanceLock,
        shutdown: ShutdownController | None = None,
    ) -> None:
        self.config_path = str(config_path)
        self._service_factory = service_factory
        self._lock_factory = lock_factory
        self.shutdown = shutdown if shutdown is not None else ShutdownController()

        self.state = BootstrapState.UNSTARTED
        self.history: list[BootstrapState] = [BootstrapState.UNSTARTED]
        self.failure: FailureReason | None = None
        self.request: ServiceConstructionRequest | None = None
        self.lock: InstanceLock | None = None
        self.service: AggregationService | None = None

    @property
    def exit_code(self) -> ExitCode:
        if self.failure is not None:
            return _EXIT_CODES[self.failure]
        if self.state is BootstrapState.TERMINATED:
            return ExitCode.OK
        return ExitCode.UNEXPECTED

    def run(self) -> ExitCode:
        """Run the whole lifecycle and return the process exit code."""

        if self.state is not BootstrapState.UNSTARTED:
            raise RuntimeError("bootstrap can only run once")

        try:
            try:
                self._sequence()
            finally:
                self._teardown()
        except Exception as exc:  # noqa: BLE001
            logger.critical(
                "bootstrap_unexpected_error",
                exc_info=True,
                extra={"state": self.state.value, "error": str(exc)},
            )
            self._fail(FailureReason.UNEXPECTED)

        if self.state is BootstrapState.STOPPING:
            self._transition(BootstrapState.TERMINATED)

        logger.info(
            "bootstrap_finished",
            extra={
                "state": self.state.value,
                "failure": self.failure.value if self.failure else None,
                "exit_code": int(self.exit_code),
            },
        )
        return self.exit_code

    def _sequence(self) -> None:
        view = load_configuration(self.config_path)
        if isinstance(view, ConfigError):
            self._config_failure(view)
            return

        lock = self._lock_factory(self.config_path)
        if not lock.acquire():
            logger.critical("bootstrap_lock_contention", extra={"config": lock.path})
            self._fail(FailureReason.LOCK_CONTENTION)
            return
        self.lock = lock
        self._transition(BootstrapState.LOCKED)
        self.shutdown.install()

        selection = select_backends(view)
        if isinstance(selection, ConfigError):
            self._config_failure(selection)
            return
        request = build_request(view, selection)
        if isinstance(request, ConfigError):
            self._config_failure(request)
            return
        self.request = request
        logger.info(
            "bootstrap_configured",
            extra={
                "bus_brokers": request.bus_brokers,
                "bind_ip": request.bind_ip,
                "bind_port": request.bind_port,
                "relational": request.relational is not None,
                "cache": request.cache is not None,
                "flush_interval_s": request.flush_interval,
            },
        )
        self._transition(BootstrapState.CONFIGURED)

        try:
            service = self._service_factory(request)
        except Exception as exc:  # noqa: BLE001
            logger.critical("bootstrap_construction_failed", exc_info=True, extra={"error": str(exc)})
            self._fail(FailureReason.CONSTRUCTION)
            return
        self.service = service
        self._transition(BootstrapState.CONSTRUCTED)
        self.shutdown.attach(service.stop)

        try:
            ready = service.init()
        except Exception as exc:  # noqa: BLE001
            logger.error("bootstrap_init_raised", exc_info=True, extra={"error": str(exc)})
            ready = False
        if not ready:
            logger.critical("bootstrap_init_failed")
            self._fail(FailureReason.INIT)
            return
        self._transition(BootstrapState.INITIALIZED)

        self._transition(BootstrapState.RUNNING)
        try:
            service.run()
        except Exception as exc:  # noqa: BLE001
            logger.critical("bootstrap_service_run_failed", exc_info=True, extra={"error": str(exc)})
            self._fail(FailureReason.RUN)
            return
        self._transition(BootstrapState.STOPPING)
        logger.info("bootstrap_service_returned", extra={"signal": self.shutdown.signal_name})
        if self.shutdown.stop_error is not None:
            logger.warning(
                "bootstrap_stop_request_failed",
                extra={"error": str(self.shutdown.stop_error)},
            )

    def _teardown(self) -> None:
        self.shutdown.detach()
        try:
            if self.service is not None:
                service, self.service = self.service, None
                service.close()
        finally:
            self.shutdown.uninstall()
            if self.lock is not None:
                self.lock.release()

    def _config_failure(self, error: ConfigError) -> None:
        logger.critical(
            "bootstrap_config_error",
            extra={
                "detail": error.describe(),
                "path": error.path,
                "key": error.key,
                "line": error.line,
                "column": error.column,
            },
        )
        self._fail(FailureReason.CONFIG)

    def _fail(self, reason: FailureReason) -> None:
        if self.failure is None:
            self.failure = reason
        if self.state is not BootstrapState.FAILED:
            self._transition(BootstrapState.FAILED)

    def _transition(self, state: BootstrapState) -> None:
        logger.debug("bootstrap_state", extra={"from": self.state.value, "to": state.value})
        self.state = state
        self.history.append(state)
