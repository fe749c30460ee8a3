"""SIGINT/SIGTERM handling that turns a termination signal into one cooperative stop request.

Python runs signal handlers on the main thread between bytecodes, possibly in the
middle of the bootstrap or of the service's run loop. The handler therefore only
reads the attached stop callback, flips a plain boolean and calls the callback.
It takes no locks, does not log and never tears anything down.
"""

import signal
from collections.abc import Callable
from types import FrameType
from typing import Any

_DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownController:
    """Process-wide bridge from termination signals to the running service's ``stop``."""

    def __init__(self, signals: tuple[signal.Signals, ...] = _DEFAULT_SIGNALS) -> None:
        self._signals = signals
        self._previous: dict[signal.Signals, Any] = {}
        self._stop_callback: Callable[[], None] | None = None
        self.stop_requested = False
        self.signal_number: int | None = None
        self.stop_error: BaseException | None = None

    @property
    def installed(self) -> bool:
        return bool(self._previous)

    @property
    def signal_name(self) -> str | None:
        if self.signal_number is None:
            return None
        try:
            return signal.Signals(self.signal_number).name
        except ValueError:
            return str(self.signal_number)

    def install(self) -> None:
        """Register the handlers; must be called from the main thread."""

        if self._previous:
            return
        for sig in self._signals:
            self._previous[sig] = signal.signal(sig, self._handle_signal)

    def uninstall(self) -> None:
        """Restore whatever handlers were active before ``install``."""

        previous, self._previous = self._previous, {}
        for sig, handler in previous.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)

    def attach(self, stop_callback: Callable[[], None]) -> None:
        """Make ``stop_callback`` the target of the next termination signal."""

        self._stop_callback = stop_callback

    def detach(self) -> None:
        self._stop_callback = None

    def request_stop(self, signal_number: int | None = None) -> None:
        """Forward at most one stop request to the attached callback.

        Without an attached callback this is a no-op. Errors raised by the
        callback are kept in ``stop_error`` rather than propagated, because the
        caller may be a signal handler.
        """

        stop_callback = self._stop_callback
        if stop_callback is None or self.stop_requested:
            return
        self.stop_requested = True
        self.signal_number = signal_number
        try:
            stop_callback()
        except Exception as exc:  # noqa: BLE001
            self.stop_error = exc

    def _handle_signal(self, signum: int, _frame: FrameType | None) -> None:
        self.request_stop(signum)
