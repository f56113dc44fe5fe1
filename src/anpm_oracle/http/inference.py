"""HTTP client for the HyperBEAM wasi-nn inference device."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

INFERENCE_PATH = "/~wasi-nn@1.0/run_inference_http"
INFERENCE_TIMEOUT_SECONDS = 120.0
DEFAULT_INFERENCE_CONFIG = json.dumps({"n_gpu_layers": 48, "ctx_size": 20480})
PROMPT_PREVIEW_CHARS = 50
_ERROR_BODY_PREVIEW_CHARS = 2000


class InferenceError(RuntimeError):
    """Inference call failed in transport, by timeout or on the backend."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class InferenceBackend(Protocol):
    """Anything that turns a prompt and config into an output string."""

    def infer(self, prompt: str, config: Any = None) -> str:
        """Run one inference."""


class InferenceClient:
    """Single GET per inference with a hard timeout and no retries."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = INFERENCE_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = httpx.Client(timeout=httpx.Timeout(timeout_seconds), transport=transport)

    def infer(self, prompt: str, config: Any = None) -> str:
        """Run one inference within `timeout_seconds` of wall time.

        The deadline covers the whole exchange including a slowly streamed body.
        """

        params: dict[str, str] = {"prompt": prompt}
        if config:
            params["config"] = config if isinstance(config, str) else json.dumps(config)

        logger.info("Sending inference request to HyperBEAM: %s", preview(prompt))
        deadline = time.monotonic() + self.timeout_seconds
        try:
            with self._client.stream(
                "GET",
                f"{self.base_url}{INFERENCE_PATH}",
                params=params,
            ) as response:
                body = self._read_until(response, deadline)
        except httpx.TimeoutException as error:
            logger.error("HyperBEAM inference timed out: %s", error)
            raise InferenceError(f"HyperBEAM inference failed: timeout ({error})") from error
        except httpx.HTTPError as error:
            logger.error("HyperBEAM inference failed: %s", error)
            raise InferenceError(f"HyperBEAM inference failed: {error}") from error

        if not response.is_success:
            body = body[:_ERROR_BODY_PREVIEW_CHARS]
            logger.error("HyperBEAM inference failed: HTTP %s %s", response.status_code, body)
            raise InferenceError(
                f"HyperBEAM inference failed: HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=body,
            )
        return body

    def _read_until(self, response: httpx.Response, deadline: float) -> str:
        chunks: list[bytes] = []
        for chunk in response.iter_bytes():
            chunks.append(chunk)
            self._check_deadline(response, deadline)
        self._check_deadline(response, deadline)
        return b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")

    def _check_deadline(self, response: httpx.Response, deadline: float) -> None:
        if time.monotonic() <= deadline:
            return
        logger.error(
            "HyperBEAM inference exceeded %.1fs while streaming the response",
            self.timeout_seconds,
        )
        raise InferenceError(
            f"HyperBEAM inference failed: timeout ({self.timeout_seconds:g}s exceeded)",
            status_code=response.status_code,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> InferenceClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def preview(text: str, limit: int = PROMPT_PREVIEW_CHARS) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")
