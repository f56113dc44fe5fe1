"""Controllers for oracle CLI commands."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import httpx

from anpm_oracle.config import Settings, generate_node_id
from anpm_oracle.http.inference import InferenceClient
from anpm_oracle.oracle.poller import TaskPoller
from anpm_oracle.oracle.pool import PoolClient
from anpm_oracle.process.client import ProcessClient, ProcessEndpoints
from anpm_oracle.process.models import TaskStatus
from anpm_oracle.process.signing import ArweaveSigner, Signer

logger = logging.getLogger(__name__)

SignerLoader = Callable[[Path], Signer]


@dataclass(slots=True)
class OracleRunCommand:
    """CLI input for the poll loop."""

    max_iterations: int | None = None


@dataclass(slots=True)
class SubmitTaskCommand:
    """CLI input for adding a task and optionally waiting for its output."""

    prompt: str
    config: str | None = None
    reference: str | None = None
    wait: bool = True
    timeout_seconds: float = 600.0
    poll_seconds: float = 1.0


@dataclass(slots=True)
class SubmitTaskResult:
    """Submit report to render in CLI."""

    lines: list[str]
    success: bool


class OracleCliController:
    """Wires settings, signer and clients for the CLI commands."""

    def __init__(
        self,
        *,
        signer_loader: SignerLoader = ArweaveSigner.from_file,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._signer_loader = signer_loader
        self._transport = transport

    def run(self, command: OracleRunCommand) -> list[str]:
        settings = Settings.from_env()
        settings.validate_for_run()
        node_id = settings.oracle.node_id
        if not node_id:
            node_id = generate_node_id()
            logger.info("Generated new Node ID for this run: %s (set NODE_ID to keep it)", node_id)
        else:
            logger.info("Using existing Node ID: %s", node_id)
        signer = self._signer_loader(settings.oracle.wallet_path)

        logger.info(
            "Starting ANPM Oracle: node_id=%s pool_process_id=%s hyperbeam_url=%s",
            node_id,
            settings.oracle.pool_process_id,
            settings.network.hyperbeam_url,
        )
        with (
            self._pool(settings, signer=signer) as pool,
            InferenceClient(
                settings.network.hyperbeam_url,
                timeout_seconds=settings.network.inference_timeout_seconds,
                transport=self._transport,
            ) as inference,
        ):
            poller = TaskPoller(
                pool=pool,
                inference=inference,
                node_id=node_id,
                poll_interval_seconds=settings.oracle.poll_interval_seconds,
            )
            summary = poller.run_loop(max_iterations=command.max_iterations)

        return [
            "Poller summary: "
            f"iterations={summary.iterations} checks={summary.checks} no_work={summary.no_work} "
            f"fetched={summary.fetched} succeeded={summary.succeeded} "
            f"failed={summary.failed} unexpected_codes={summary.unexpected_codes}",
        ]

    def check(self) -> list[str]:
        settings = Settings.from_env()
        settings.validate_for_client()
        with self._pool(settings, signer=None) as pool:
            pending = pool.has_pending_task()
        return [f"Pending tasks: {'yes' if pending else 'no'}"]

    def submit(self, command: SubmitTaskCommand) -> SubmitTaskResult:
        settings = Settings.from_env()
        settings.validate_for_client()
        signer = self._signer_loader(settings.oracle.wallet_path)
        reference = command.reference or str(uuid.uuid4())
        lines: list[str] = []
        with self._pool(settings, signer=signer) as pool:
            pool.add_task(reference, command.prompt, command.config)
            lines.append(f"Task added: ref={reference}")
            if not command.wait:
                return SubmitTaskResult(lines=lines, success=True)

            deadline = time.monotonic() + command.timeout_seconds
            last_status: TaskStatus | None = None
            while True:
                task = pool.get_task(reference)
                if task is not None:
                    if task.status is TaskStatus.DONE:
                        lines.append(f"Task completed: {task.output or ''}")
                        return SubmitTaskResult(lines=lines, success=True)
                    if task.status is not last_status:
                        logger.info("Task %s status: %s", reference, task.status.value)
                        last_status = task.status
                if time.monotonic() >= deadline:
                    lines.append(
                        f"Timed out after {command.timeout_seconds:g}s waiting for task {reference}",
                    )
                    return SubmitTaskResult(lines=lines, success=False)
                time.sleep(command.poll_seconds)

    @contextmanager
    def _pool(self, settings: Settings, *, signer: Signer | None) -> Iterator[PoolClient]:
        process = ProcessClient(
            settings.oracle.pool_process_id,
            signer=signer,
            endpoints=ProcessEndpoints(
                cu_url=settings.network.cu_url,
                mu_url=settings.network.mu_url,
            ),
            transport=self._transport,
            timeout_seconds=settings.network.request_timeout_seconds,
            settlement_timeout_seconds=settings.network.settlement_timeout_seconds,
            debug=settings.oracle.debug,
        )
        try:
            yield PoolClient(process)
        finally:
            process.close()
