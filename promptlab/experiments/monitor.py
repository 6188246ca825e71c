"""
Background monitor for running experiments.

Each running experiment owns one daemon thread that periodically invokes the
manager's winner/bandit check. Cancelling sets an event the thread waits on,
so the thread exits at its next wake-up without running another tick.
"""

import threading
from typing import Callable, Optional

from promptlab.logging import get_component_logger

log = get_component_logger("experiments")


class ExperimentMonitor:
    """Periodic task bound to one experiment."""

    def __init__(
        self,
        experiment_id: str,
        interval_seconds: float,
        tick: Callable[[str], None],
    ):
        self.experiment_id = experiment_id
        self.interval_seconds = interval_seconds
        self._tick = tick
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name=f"promptlab-monitor-{self.experiment_id[:8]}",
        )
        self._thread.start()
        log.debug(
            f"Monitor started for {self.experiment_id} "
            f"(every {self.interval_seconds:.0f}s)"
        )

    def _run(self) -> None:
        while not self._cancelled.wait(self.interval_seconds):
            try:
                self._tick(self.experiment_id)
            except Exception as e:
                log.error(f"Monitor tick failed for {self.experiment_id}: {e}")

    def cancel(self, timeout: float = 2.0) -> None:
        """Stop the monitor. Safe to call from the monitor's own thread."""
        self._cancelled.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        log.debug(f"Monitor cancelled for {self.experiment_id}")

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
