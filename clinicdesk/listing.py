"""
List request helpers: sequence-tagged loads and a debouncer whose superseded
calls are cancelled, not just ignored.
"""

import threading
from typing import Any, Callable, Optional

from clinicdesk.client import CancelToken


class SequencedLoader:
    """Only the latest issued load may apply its result."""

    def __init__(self):
        self._lock = threading.Lock()
        self._latest = 0

    @property
    def latest(self) -> int:
        return self._latest

    def issue(self) -> int:
        with self._lock:
            self._latest += 1
            return self._latest

    def is_latest(self, ticket: int) -> bool:
        with self._lock:
            return ticket == self._latest

    def load(self, fetch: Callable[[], Any], apply: Callable[[Any], None]) -> bool:
        """
        Run ``fetch`` and hand its result to ``apply`` unless a newer load
        was issued meanwhile. Returns True when the result was applied.
        Errors of stale loads are dropped as well.
        """
        ticket = self.issue()
        try:
            result = fetch()
        except Exception:
            if not self.is_latest(ticket):
                return False
            raise
        with self._lock:
            if ticket != self._latest:
                return False
            apply(result)
            return True


class Pending:
    """Handle on one debounced call."""

    def __init__(self, fn: Callable[[CancelToken], Any]):
        self.fn = fn
        self.token = CancelToken()
        self.result: Any = None
        self.error: Optional[BaseException] = None
        self.superseded = False
        self._done = threading.Event()

    def supersede(self) -> None:
        self.superseded = True
        self.token.cancel()
        self._done.set()

    def finish(self) -> None:
        self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)


class Debouncer:
    """
    Coalesce rapid calls into one: each ``call`` restarts the delay, and the
    call it replaces is cancelled together with its request token.
    """

    def __init__(self, delay_ms: int, timer_factory=threading.Timer):
        self.delay = delay_ms / 1000.0
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._pending: Optional[Pending] = None
        self._timer = None

    def call(self, fn: Callable[[CancelToken], Any]) -> Pending:
        pending = Pending(fn)
        timer = self._timer_factory(self.delay, self._fire, args=(pending,))
        timer.daemon = True
        with self._lock:
            previous, previous_timer = self._pending, self._timer
            self._pending, self._timer = pending, timer
        if previous_timer is not None:
            previous_timer.cancel()
        if previous is not None and not previous.done:
            previous.supersede()
        timer.start()
        return pending

    def cancel(self) -> None:
        with self._lock:
            pending, timer = self._pending, self._timer
            self._pending = self._timer = None
        if timer is not None:
            timer.cancel()
        if pending is not None:
            pending.supersede()

    def _fire(self, pending: Pending) -> None:
        with self._lock:
            if pending is not self._pending:
                return
        try:
            pending.result = pending.fn(pending.token)
        except Exception as e:
            pending.error = e
        finally:
            pending.finish()
