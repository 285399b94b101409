"""
Durable Step Executor

Runs named units of work with bounded retries, exponential backoff and a
per-attempt timeout. Step outputs are written to an append-only step log
keyed by (run_id, step_name), so re-running a pipeline after a restart
returns recorded results instead of repeating downloads or transcriptions.
"""

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class PermanentStepError(Exception):
    """Raised by a step action to fail immediately without retrying."""
    pass


class StepTimeoutError(Exception):
    """Raised when a step attempt exceeds its timeout."""
    pass


class RunAborted(Exception):
    """Raised when a run was aborted before a step could start."""
    pass


class StepFailedError(Exception):
    """Raised when a step has failed on every allowed attempt."""

    def __init__(self, step_name: str, attempts: int, error: BaseException):
        self.step_name = step_name
        self.attempts = attempts
        self.error = error
        super().__init__(f"Step '{step_name}' failed after {attempts} attempts: {error}")


@dataclass
class StepPolicy:
    """Retry and timeout policy for a step."""

    max_retries: int = 0
    base_delay: float = 0.0  # seconds
    backoff_multiplier: float = 2.0
    timeout: Optional[float] = None  # seconds per attempt

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (attempt is zero-based)."""
        return self.base_delay * (self.backoff_multiplier ** attempt)


class StepExecutor:
    """
    Execute memoized pipeline steps.

    The step log must provide ``get_step_output(run_id, step_name)`` returning
    the recorded JSON (or None) and ``record_step(run_id, step_name, json)``;
    :class:`podpulse.db.Database` implements both.
    """

    def __init__(self, step_log, sleep: Callable[[float], None] = time.sleep):
        self.step_log = step_log
        self._sleep = sleep

    def run(
        self,
        run_id: str,
        step_name: str,
        action: Callable[[], Any],
        policy: Optional[StepPolicy] = None,
        abort_event: Optional[threading.Event] = None,
    ) -> Any:
        """
        Run a step once per run, returning its JSON-compatible output.

        Args:
            run_id: Owning pipeline run
            step_name: Name unique within the run
            action: Zero-argument callable doing the work
            policy: Retry/timeout policy (default: single attempt, no timeout)
            abort_event: Set when the run should stop starting new work

        Returns:
            The action's result, as recorded in the step log

        Raises:
            RunAborted: If the abort event is set before an attempt
            PermanentStepError: If the action signalled a non-retriable failure
            StepFailedError: If every attempt failed
        """
        policy = policy or StepPolicy()

        recorded = self.step_log.get_step_output(run_id, step_name)
        if recorded is not None:
            logger.info(f"[{run_id[:8]}] Step '{step_name}' already completed, replaying result")
            return json.loads(recorded)

        attempt = 0
        while True:
            if abort_event is not None and abort_event.is_set():
                raise RunAborted(f"Run {run_id} aborted before step '{step_name}'")

            try:
                result = self._attempt(step_name, action, policy.timeout)
            except (PermanentStepError, RunAborted):
                raise
            except Exception as e:
                if attempt >= policy.max_retries:
                    logger.error(
                        f"[{run_id[:8]}] Step '{step_name}' failed after {attempt + 1} attempts: {e}"
                    )
                    raise StepFailedError(step_name, attempt + 1, e) from e

                delay = policy.delay_for(attempt)
                attempt += 1
                logger.warning(
                    f"[{run_id[:8]}] Step '{step_name}' failed ({e}), "
                    f"retry {attempt}/{policy.max_retries} in {delay:.0f}s"
                )
                self._sleep(delay)
                continue

            output_json = json.dumps(result)
            self.step_log.record_step(run_id, step_name, output_json)
            return json.loads(output_json)

    @staticmethod
    def _attempt(step_name: str, action: Callable[[], Any], timeout: Optional[float]) -> Any:
        """Run one attempt, bounded by timeout when one is set."""
        if timeout is None:
            return action()

        # The worker thread cannot be killed. A timed-out attempt is drained
        # before the next one starts so two attempts never write the same
        # output concurrently; actions bound themselves with their own
        # HTTP and download deadlines.
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"step-{step_name}")
        try:
            future = pool.submit(action)
            try:
                return future.result(timeout=timeout)
            except FutureTimeoutError:
                logger.warning(f"Step '{step_name}' exceeded {timeout:.0f}s, waiting for the attempt to stop")
                raise StepTimeoutError(f"Step '{step_name}' timed out after {timeout:.0f}s")
        finally:
            pool.shutdown(wait=True)
