"""Runtime configuration for the oracle node, loaded from the environment."""

from __future__ import annotations

import os
import secrets
import socket
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from anpm_oracle.process.client import DEFAULT_CU_URL, DEFAULT_MU_URL

DEFAULT_HYPERBEAM_URL = "http://localhost:10000"
DEFAULT_WALLET_PATH = Path("~/.aos.json")


@dataclass(slots=True)
class OracleSettings:
    """Pool binding and node identity."""

    pool_process_id: str = ""
    node_id: str = ""
    poll_interval_ms: int = 1_000
    wallet_path: Path = DEFAULT_WALLET_PATH
    debug: bool = False

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0


@dataclass(slots=True)
class NetworkSettings:
    """Endpoints of the AO units and the inference backend."""

    cu_url: str = DEFAULT_CU_URL
    mu_url: str = DEFAULT_MU_URL
    hyperbeam_url: str = DEFAULT_HYPERBEAM_URL
    request_timeout_seconds: float = 60.0
    settlement_timeout_seconds: float | None = None
    inference_timeout_seconds: float = 120.0


@dataclass(slots=True)
class LoggingSettings:
    """Log level and optional log file."""

    level: str = "INFO"
    file: Path | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    oracle: OracleSettings = field(default_factory=OracleSettings)
    network: NetworkSettings = field(default_factory=NetworkSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for a local HyperBEAM node."""

        log_file = os.getenv("ANPM_ORACLE_LOG_FILE", "").strip()
        return cls(
            oracle=OracleSettings(
                pool_process_id=os.getenv("POOL_PROCESS_ID", "").strip(),
                node_id=os.getenv("NODE_ID", "").strip(),
                poll_interval_ms=_env_int("POLL_INTERVAL", 1_000),
                wallet_path=Path(os.getenv("WALLET", str(DEFAULT_WALLET_PATH))),
                debug=_env_bool("ANPM_ORACLE_DEBUG", default=False),
            ),
            network=NetworkSettings(
                cu_url=os.getenv("AO_CU_URL", DEFAULT_CU_URL).strip(),
                mu_url=os.getenv("AO_MU_URL", DEFAULT_MU_URL).strip(),
                hyperbeam_url=os.getenv("HYPERBEAM_URL", DEFAULT_HYPERBEAM_URL).strip(),
                request_timeout_seconds=float(
                    os.getenv("ANPM_ORACLE_REQUEST_TIMEOUT_SECONDS", "60"),
                ),
                settlement_timeout_seconds=_env_optional_float(
                    "ANPM_ORACLE_SETTLEMENT_TIMEOUT_SECONDS",
                ),
            ),
            logging=LoggingSettings(
                level=os.getenv("ANPM_ORACLE_LOG_LEVEL", "INFO").strip().upper() or "INFO",
                file=Path(log_file) if log_file else None,
            ),
        )

    def validate_for_client(self) -> None:
        """Raise configuration error if the pool cannot be reached."""

        if not self.oracle.pool_process_id:
            raise ValueError("POOL_PROCESS_ID environment variable is not set.")
        _validate_url(self.network.cu_url, name="AO_CU_URL")
        _validate_url(self.network.mu_url, name="AO_MU_URL")
        if self.network.request_timeout_seconds <= 0:
            raise ValueError("ANPM_ORACLE_REQUEST_TIMEOUT_SECONDS must be > 0.")
        settlement = self.network.settlement_timeout_seconds
        if settlement is not None and settlement <= 0:
            raise ValueError("ANPM_ORACLE_SETTLEMENT_TIMEOUT_SECONDS must be > 0 when set.")

    def validate_for_run(self) -> None:
        """Raise configuration error if the poll loop cannot start."""

        self.validate_for_client()
        _validate_url(self.network.hyperbeam_url, name="HYPERBEAM_URL")
        if self.oracle.poll_interval_ms <= 0:
            raise ValueError("POLL_INTERVAL must be a positive number of milliseconds.")


def generate_node_id() -> str:
    """Hostname plus 16 random bytes, unique per generated identity."""

    return f"{socket.gethostname()}-{secrets.token_hex(16)}"


def _validate_url(value: str, *, name: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_optional_float(name: str) -> float | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
