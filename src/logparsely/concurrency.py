"""
Shutdown coordination between the CLI and ingestion threads.

SharedState combines a one-shot stop broadcast with a wait-group counter of
outstanding sources. Both are guarded by condition variables; nothing here
polls.
"""

from __future__ import annotations

import logging
import threading

logger = logging.getLogger("logparsely")


class SharedState:
    """Stop broadcast plus a counter of outstanding ingestion sources.

    Example:
        state = SharedState()
        state.enter()                 # before starting a source's threads
        ...
        state.signal_stop()           # operator asked to quit
        state.wait_all_done()         # blocks until every source called leave()
    """

    def __init__(self) -> None:
        self._stop_cond = threading.Condition()
        self._should_stop = False
        self._subscribers: list[threading.Event] = []
        self._done_cond = threading.Condition()
        self._outstanding = 0

    # =========================================================================
    # Stop broadcast
    # =========================================================================

    def signal_stop(self) -> None:
        """Request every source to stop. Calling it again has no further effect."""
        with self._stop_cond:
            if self._should_stop:
                return
            self._should_stop = True
            subscribers, self._subscribers = self._subscribers, []
            self._stop_cond.notify_all()
        for event in subscribers:
            event.set()

    def wait_for_stop(self, timeout: float | None = None) -> bool:
        """Block until signal_stop() has been called.

        Returns:
            True if stop was signaled, False if ``timeout`` elapsed first
        """
        with self._stop_cond:
            return self._stop_cond.wait_for(lambda: self._should_stop, timeout=timeout)

    @property
    def stop_requested(self) -> bool:
        with self._stop_cond:
            return self._should_stop

    def subscribe(self, event: threading.Event) -> None:
        """Set ``event`` when stop is signaled (immediately if it already was).

        Lets a thread wait on one event that can also be set by other
        conditions, such as its source finishing on its own.
        """
        with self._stop_cond:
            if not self._should_stop:
                self._subscribers.append(event)
                return
        event.set()

    def unsubscribe(self, event: threading.Event) -> None:
        """Stop tracking ``event``. Unknown events are ignored."""
        with self._stop_cond:
            try:
                self._subscribers.remove(event)
            except ValueError:
                pass

    # =========================================================================
    # Wait-group
    # =========================================================================

    def enter(self) -> None:
        """Register one more outstanding source."""
        with self._done_cond:
            self._outstanding += 1

    def leave(self) -> None:
        """Mark one source as finished, waking waiters when none remain."""
        with self._done_cond:
            if self._outstanding <= 0:
                raise RuntimeError("leave() called with no outstanding sources")
            self._outstanding -= 1
            if self._outstanding == 0:
                self._done_cond.notify_all()

    @property
    def outstanding(self) -> int:
        with self._done_cond:
            return self._outstanding

    def wait_all_done(self, progress_interval: float | None = None) -> None:
        """Block until every source has called leave().

        Args:
            progress_interval: If set, log a warning every this many seconds
                while sources are still outstanding
        """
        with self._done_cond:
            while self._outstanding > 0:
                if progress_interval is None:
                    self._done_cond.wait()
                elif not self._done_cond.wait(timeout=progress_interval):
                    if self._outstanding > 0:
                        logger.warning(
                            f"Still waiting on {self._outstanding} ingestion source(s) to finish"
                        )
