from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from .core import config


@dataclass
class RelayContext:
    """Everything a relay component needs: store handle, identity and timings.

    Built once per process (``from_config``) or directly in tests, then handed to
    the registry, channel, gateway and processor at construction.
    """

    session_factory: sessionmaker
    server_id: str
    role: str = "backend"
    server_name: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    max_players: int = 100
    heartbeat_interval: float = 30.0
    stale_after_seconds: float = 120.0
    sweep_interval: float = 30.0
    poll_interval: float = 2.0
    request_timeout_seconds: int = 30
    max_retries: int = 3
    retry_backoff_seconds: float = 0.5
    claim_batch_size: int = 10
    retention_interval: float = 3600.0
    request_retention_hours: int = 24
    metrics_retention_days: int = 30
    run_maintenance: bool = False
    local_forward_url: str = ""
    local_forward_timeout_seconds: int = 10

    def __post_init__(self) -> None:
        self.role = str(self.role or "").strip().lower()
        if self.role not in ("hub", "backend"):
            raise ValueError(f"Unsupported server role: {self.role!r}")
        if not self.server_name:
            self.server_name = self.server_id

    @property
    def is_hub(self) -> bool:
        return self.role == "hub"

    @classmethod
    def from_config(cls, session_factory: sessionmaker) -> "RelayContext":
        return cls(
            session_factory=session_factory,
            server_id=config.RELAY_SERVER_ID,
            role=config.RELAY_SERVER_ROLE,
            server_name=config.RELAY_SERVER_NAME,
            host=config.RELAY_HOST,
            port=config.RELAY_PORT,
            max_players=config.RELAY_MAX_PLAYERS,
            heartbeat_interval=config.RELAY_HEARTBEAT_INTERVAL_SECONDS,
            stale_after_seconds=config.RELAY_STALE_AFTER_SECONDS,
            sweep_interval=config.RELAY_SWEEP_INTERVAL_SECONDS,
            poll_interval=config.RELAY_POLL_INTERVAL_SECONDS,
            request_timeout_seconds=config.RELAY_REQUEST_TIMEOUT_SECONDS,
            max_retries=config.RELAY_MAX_RETRIES,
            retry_backoff_seconds=config.RELAY_RETRY_BACKOFF_SECONDS,
            claim_batch_size=config.RELAY_CLAIM_BATCH_SIZE,
            retention_interval=config.RELAY_RETENTION_INTERVAL_SECONDS,
            request_retention_hours=config.RELAY_REQUEST_RETENTION_HOURS,
            metrics_retention_days=config.RELAY_METRICS_RETENTION_DAYS,
            run_maintenance=config.RELAY_RUN_MAINTENANCE,
            local_forward_url=config.RELAY_LOCAL_FORWARD_URL,
            local_forward_timeout_seconds=config.RELAY_LOCAL_FORWARD_TIMEOUT_SECONDS,
        )
