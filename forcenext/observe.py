import logging
from typing import Callable, List, Optional

from forcenext.errors import StaleSession
from forcenext.scheduler import Scheduler, Timer


class Disposer:
    """Handle for one subscription or timer. dispose() runs the release at most once."""

    def __init__(self, release: Optional[Callable[[], None]] = None):
        self._release = release
        self.disposed = False

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        release, self._release = self._release, None
        if release is None:
            return
        try:
            release()
        except Exception as e:
            logging.debug(f"Dispose failed: {e}")

    @classmethod
    def for_timer(cls, timer: Timer) -> "Disposer":
        return cls(timer.cancel)


class Scope:
    """
    Liveness flag plus everything attached under it.

    Callbacks registered through guard()/call_later() become no-ops once the
    scope is closed, so a late notification can never act on a dead session.
    """

    def __init__(self, scheduler: Scheduler, name: str = "scope"):
        self.scheduler = scheduler
        self.name = name
        self.live = True
        self._disposers: List[Disposer] = []

    def add(self, disposer: Disposer) -> Disposer:
        if not self.live:
            disposer.dispose()
            return disposer
        self._disposers.append(disposer)
        return disposer

    def guard(self, callback: Callable[..., None]) -> Callable[..., None]:
        def guarded(*args, **kwargs):
            if not self.live:
                logging.debug(f"{StaleSession.__name__}: callback after {self.name} closed, ignored")
                return None
            return callback(*args, **kwargs)

        return guarded

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> Timer:
        timer = self.scheduler.call_later(delay_ms, self.guard(callback))
        self.add(Disposer.for_timer(timer))
        return timer

    def active(self) -> int:
        return sum(1 for d in self._disposers if not d.disposed)

    def close(self) -> None:
        if not self.live:
            return
        self.live = False
        disposers, self._disposers = self._disposers, []
        for d in disposers:
            d.dispose()
