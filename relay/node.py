from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from .context import RelayContext
from .migrations import ensure_schema
from .schemas import EndpointDescriptor, ServerDescriptor
from .services.channel import RequestChannel
from .services.gateway import Gateway
from .services.handlers import LocalHandlerRegistry
from .services.metrics import METRIC_ONLINE_PLAYERS, record_metric
from .services.processor import Processor
from .services.registry import MembershipRegistry
from .services.scheduler import PeriodicJob

logger = logging.getLogger(__name__)

StatsProvider = Callable[[], tuple[int, int]]


class RelayNode:
    """One relay participant: registry plus the gateway (hub) or processor (backend)."""

    def __init__(
        self,
        context: RelayContext,
        *,
        handlers: Optional[LocalHandlerRegistry] = None,
        addon_name: Optional[str] = None,
        addon_version: str = "1.0.0",
        stats_provider: Optional[StatsProvider] = None,
        metadata: Optional[dict[str, Any]] = None,
    ):
        self.context = context
        self.handlers = handlers or LocalHandlerRegistry()
        self.addon_name = addon_name or f"{context.server_id}-endpoints"
        self.addon_version = addon_version
        self.stats_provider = stats_provider
        self.metadata = dict(metadata or {})

        self.registry = MembershipRegistry(context)
        self.channel = RequestChannel(context)
        self.gateway: Optional[Gateway] = None
        self.processor: Optional[Processor] = None
        if context.is_hub:
            self.gateway = Gateway(context, self.registry, self.channel)
        else:
            self.processor = Processor(context, self.channel, self.handlers)
        self.jobs: list[PeriodicJob] = []

    def _player_counts(self) -> tuple[int, int]:
        if self.stats_provider is None:
            return 0, self.context.max_players
        online, maximum = self.stats_provider()
        return int(online), int(maximum)

    def descriptor(self) -> ServerDescriptor:
        online, maximum = self._player_counts()
        return ServerDescriptor(
            server_id=self.context.server_id,
            server_name=self.context.server_name,
            server_type=self.context.role,
            host=self.context.host,
            port=self.context.port,
            online_players=online,
            max_players=maximum,
            status="online",
            metadata=self.metadata,
        )

    def announce_endpoints(self) -> Optional[list[EndpointDescriptor]]:
        endpoints = self.handlers.endpoints()
        if not endpoints:
            return None
        self.registry.register_addon(
            self.context.server_id,
            self.addon_name,
            endpoints,
            version=self.addon_version,
        )
        return endpoints

    def start(self, *, create_schema: bool = True, start_jobs: bool = True) -> None:
        if create_schema:
            ensure_schema(self.context.session_factory.kw["bind"])
        self.registry.register_server(self.descriptor())
        self.announce_endpoints()
        if start_jobs:
            self._start_jobs()
        logger.info("Relay node '%s' started as %s", self.context.server_id, self.context.role)

    def _start_jobs(self) -> None:
        context = self.context
        self.jobs = [PeriodicJob("heartbeat", context.heartbeat_interval, self.heartbeat_tick, initial_delay=context.heartbeat_interval)]
        if self.processor is not None:
            self.jobs.append(PeriodicJob("processor", context.poll_interval, self.processor.drain))
        if context.run_maintenance:
            self.jobs.append(PeriodicJob("sweep", context.sweep_interval, self.sweep_tick))
            self.jobs.append(
                PeriodicJob(
                    "retention",
                    context.retention_interval,
                    self.retention_tick,
                    initial_delay=min(60.0, context.retention_interval),
                )
            )
        for job in self.jobs:
            job.start()

    def stop(self) -> None:
        for job in self.jobs:
            job.stop()
        self.jobs = []
        try:
            self.registry.mark_offline(self.context.server_id)
        except SQLAlchemyError:
            logger.exception("Failed to mark server '%s' offline on shutdown", self.context.server_id)
        logger.info("Relay node '%s' stopped", self.context.server_id)

    def heartbeat_tick(self) -> bool:
        """Refresh this server's liveness; store errors wait for the next tick."""
        try:
            online, maximum = self._player_counts()
            alive = self.registry.heartbeat(
                self.context.server_id, online_players=online, max_players=maximum
            )
            if not alive:
                logger.info("Server '%s' row missing; registering again", self.context.server_id)
                self.registry.register_server(self.descriptor())
                self.announce_endpoints()
        except SQLAlchemyError:
            logger.exception("Heartbeat for '%s' failed; will retry", self.context.server_id)
            return False
        record_metric(
            self.context.session_factory,
            server_id=self.context.server_id,
            metric_type=METRIC_ONLINE_PLAYERS,
            value=online,
        )
        return True

    def sweep_tick(self) -> dict[str, int]:
        return {
            "stale_servers": self.registry.sweep_stale_servers(),
            "timed_out_requests": self.channel.sweep_timeouts(),
        }

    def retention_tick(self) -> dict[str, int]:
        return self.channel.purge_expired()
