"""
Job Runner

Thread-backed durable-execution primitive for pipeline runs:
``create(payload) -> run_id`` and ``get(run_id).abort()``.

Durability comes from the step log, not from this runner: a run started
again under the same run id replays its completed steps.
"""

import logging
import threading
import uuid
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

# target(run_id, payload, abort_event)
RunTarget = Callable[[str, dict, threading.Event], None]


class RunNotFoundError(Exception):
    """Raised when a run id is unknown to this runner."""
    pass


class RunHandle:
    """A single pipeline run executing on its own thread."""

    def __init__(self, run_id: str, payload: dict):
        self.id = run_id
        self.payload = payload
        self.abort_event = threading.Event()
        self.status = "queued"  # queued | running | finished | errored
        self.thread: Optional[threading.Thread] = None

    def abort(self) -> None:
        """Request cooperative cancellation. In-flight calls are not interrupted."""
        logger.info(f"Abort requested for run {self.id[:8]}")
        self.abort_event.set()

    def is_alive(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        if self.thread is not None:
            self.thread.join(timeout)

    def __repr__(self):
        return f"RunHandle(id={self.id[:8]}, status={self.status})"


class ThreadJobRunner:
    """Start each run on a daemon thread and keep handles for abort until it ends."""

    def __init__(self, target: RunTarget):
        self.target = target
        self._runs: Dict[str, RunHandle] = {}
        self._lock = threading.Lock()

    def create(self, payload: dict, run_id: Optional[str] = None) -> str:
        """
        Start a run.

        Args:
            payload: Parameters passed to the target
            run_id: Reuse an existing run id to resume its recorded steps

        Returns:
            The run id
        """
        run_id = run_id or str(uuid.uuid4())
        handle = RunHandle(run_id, payload)

        def _execute():
            handle.status = "running"
            try:
                self.target(run_id, payload, handle.abort_event)
                handle.status = "finished"
            except Exception as e:
                handle.status = "errored"
                logger.exception(f"Run {run_id[:8]} crashed: {e}")
            finally:
                self._forget(handle)

        handle.thread = threading.Thread(
            target=_execute, name=f"run-{run_id[:8]}", daemon=True
        )
        with self._lock:
            self._runs[run_id] = handle
        handle.thread.start()

        logger.info(f"Started run {run_id[:8]}")
        return run_id

    def _forget(self, handle: RunHandle) -> None:
        # A resumed run may already have replaced this handle under the same id
        with self._lock:
            if self._runs.get(handle.id) is handle:
                del self._runs[handle.id]

    def get(self, run_id: str) -> RunHandle:
        with self._lock:
            handle = self._runs.get(run_id)
        if handle is None:
            raise RunNotFoundError(f"Run not found: {run_id}")
        return handle

    def join_all(self, timeout: Optional[float] = None) -> None:
        """Wait for every run still in progress."""
        with self._lock:
            handles = list(self._runs.values())
        for handle in handles:
            handle.join(timeout)

    def is_running(self, run_id: str) -> bool:
        try:
            return self.get(run_id).is_alive()
        except RunNotFoundError:
            return False
