"""Poll loop that claims pool tasks, runs inference and submits the output."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any

from anpm_oracle.http.inference import DEFAULT_INFERENCE_CONFIG, InferenceBackend, preview
from anpm_oracle.oracle.pool import ACTION_GET_PENDING_TASK, AuthorizationError, PoolClient
from anpm_oracle.process.models import TaskCode

logger = logging.getLogger(__name__)


class PollerState(str, Enum):
    """Where the poller is inside one iteration."""

    IDLE = "idle"
    CHECKING = "checking"
    NO_WORK = "no_work"
    FETCHING = "fetching"
    INFERRING = "inferring"
    SUBMITTING = "submitting"
    FAILED = "failed"


@dataclass(slots=True)
class PollerRunSummary:
    """Aggregate poller counters for CLI reporting."""

    iterations: int = 0
    checks: int = 0
    no_work: int = 0
    fetched: int = 0
    succeeded: int = 0
    failed: int = 0
    unexpected_codes: int = 0
    waits: int = 0

    def add(self, other: PollerRunSummary) -> None:
        self.iterations += other.iterations
        self.checks += other.checks
        self.no_work += other.no_work
        self.fetched += other.fetched
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.unexpected_codes += other.unexpected_codes
        self.waits += other.waits


class TaskPoller:
    """Single sequential worker: check, fetch, infer, submit, wait, repeat.

    Every iteration is followed by the same fixed wait, whether it succeeded,
    found no work or failed. Recovery of a task that failed locally is left to
    the pool's own reassignment.
    """

    def __init__(
        self,
        *,
        pool: PoolClient,
        inference: InferenceBackend,
        node_id: str,
        poll_interval_seconds: float = 1.0,
        default_inference_config: Any = DEFAULT_INFERENCE_CONFIG,
    ) -> None:
        if not node_id:
            raise ValueError("node_id must not be empty")
        self.pool = pool
        self.inference = inference
        self.node_id = node_id
        self.poll_interval_seconds = poll_interval_seconds
        self.default_inference_config = default_inference_config
        self.state = PollerState.IDLE
        self._stop_requested = False
        self._stop_signal_name: str | None = None

    def run_once(self) -> PollerRunSummary:
        """Run one iteration without the trailing wait.

        Raises:
            AuthorizationError: the pool does not know this node identity.
        """

        summary = PollerRunSummary(iterations=1)
        task_ref: str | None = None
        try:
            self.state = PollerState.CHECKING
            summary.checks = 1
            logger.debug("Requesting pending task from pool...")
            if not self.pool.has_pending_task():
                self._no_work(summary)
                return summary

            self.state = PollerState.FETCHING
            outcome = self.pool.fetch_task(self.node_id)
            if outcome.code is TaskCode.NO_CONTENT:
                self._no_work(summary)
                return summary
            if outcome.task is None:
                summary.unexpected_codes = 1
                logger.warning(
                    "Unexpected %s code %s: %s",
                    ACTION_GET_PENDING_TASK,
                    outcome.raw_code,
                    outcome.detail,
                )
                return summary

            task = outcome.task
            task_ref = task.ref
            summary.fetched = 1
            logger.info("Received task %s: %s", task.ref, preview(task.prompt))

            self.state = PollerState.INFERRING
            logger.info("Processing task %s with HyperBEAM", task.ref)
            output = self.inference.infer(task.prompt, task.config or self.default_inference_config)

            self.state = PollerState.SUBMITTING
            logger.info("Task %s completed, sending response...", task.ref)
            self.pool.send_task_response(self.node_id, task.ref, output)
            summary.succeeded = 1
            logger.info("Task %s response sent successfully", task.ref)
        except AuthorizationError:
            self.state = PollerState.FAILED
            logger.critical("Node %s is not authorized by the pool; stopping", self.node_id)
            raise
        except Exception as error:  # noqa: BLE001
            self.state = PollerState.FAILED
            summary.failed = 1
            logger.error(
                "Error in poll loop (task=%s): %s",
                task_ref or "-",
                error,
                exc_info=True,
            )
        return summary

    def run_loop(self, *, max_iterations: int | None = None) -> PollerRunSummary:
        """Iterate until stopped by a signal or after `max_iterations`.

        `AuthorizationError` is not caught and ends the loop.
        """

        aggregate = PollerRunSummary()
        with self._signal_handlers():
            while True:
                if self._stop_requested:
                    return aggregate
                if max_iterations is not None and aggregate.iterations >= max_iterations:
                    return aggregate

                aggregate.add(self.run_once())
                if self._stop_requested:
                    return aggregate

                self.state = PollerState.IDLE
                self._sleep_with_stop(self.poll_interval_seconds)
                aggregate.waits += 1

    def request_stop(self, *, signal_name: str = "manual") -> None:
        self._stop_requested = True
        self._stop_signal_name = signal_name
        logger.info("Stop requested (%s); finishing current iteration", signal_name)

    def _no_work(self, summary: PollerRunSummary) -> None:
        self.state = PollerState.NO_WORK
        summary.no_work = 1
        logger.info("No pending tasks available, skipping...")

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            pass
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
