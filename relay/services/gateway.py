from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..context import RelayContext
from ..errors import TargetUnavailableError
from ..models import NetworkResponse, Server
from .channel import RequestChannel
from .codec import decode_headers, header_value, strip_hop_by_hop
from .observability import ProxyStats
from .registry import MembershipRegistry

logger = logging.getLogger(__name__)

OUTCOME_OK = "ok"
OUTCOME_UNAVAILABLE = "unavailable"
OUTCOME_NOT_FOUND = "not_found"
OUTCOME_UNAUTHORIZED = "unauthorized"
OUTCOME_TIMEOUT = "timeout"
OUTCOME_CANCELLED = "cancelled"

# 499: client closed request.
_OUTCOME_STATUS = {
    OUTCOME_UNAVAILABLE: 503,
    OUTCOME_NOT_FOUND: 404,
    OUTCOME_UNAUTHORIZED: 401,
    OUTCOME_TIMEOUT: 504,
    OUTCOME_CANCELLED: 499,
}


@dataclass
class ProxyResult:
    outcome: str
    status_code: int
    body: Optional[str] = None
    content_type: str = "application/json"
    headers: dict[str, str] = field(default_factory=dict)
    request_id: Optional[str] = None
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome == OUTCOME_OK

    @classmethod
    def error(cls, outcome: str, detail: str, request_id: Optional[str] = None) -> "ProxyResult":
        return cls(
            outcome=outcome,
            status_code=_OUTCOME_STATUS[outcome],
            body=json.dumps({"detail": detail}),
            content_type="application/json",
            request_id=request_id,
        )

    @classmethod
    def from_response(cls, response: NetworkResponse) -> "ProxyResult":
        return cls(
            outcome=OUTCOME_OK,
            status_code=int(response.status_code),
            body=response.body,
            content_type=response.content_type or "application/json",
            headers=strip_hop_by_hop(decode_headers(response.headers)),
            request_id=response.request_id,
        )


class Gateway:
    """Hub side of the relay: enqueue, poll with a budget, hand back the answer."""

    def __init__(
        self,
        context: RelayContext,
        registry: MembershipRegistry,
        channel: RequestChannel,
        *,
        stats: Optional[ProxyStats] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.context = context
        self.registry = registry
        self.channel = channel
        self.stats = stats or ProxyStats()
        self._clock = clock

    def resolve_target(self, server_id: str) -> Server:
        server = self.registry.get_server(server_id)
        if server is None:
            raise TargetUnavailableError(server_id, "unknown")
        if not self.registry.is_online(server):
            raise TargetUnavailableError(server_id, server.status or "offline")
        return server

    def proxy(
        self,
        server_id: str,
        method: str,
        path: str,
        *,
        headers: Optional[Mapping[str, Any]] = None,
        query: Any = None,
        body: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
        timeout_seconds: Optional[int] = None,
        priority: int = 0,
    ) -> ProxyResult:
        started = self._clock()
        result = self._proxy(
            server_id,
            method,
            path,
            headers=headers or {},
            query=query,
            body=body,
            cancel=cancel or threading.Event(),
            timeout_seconds=int(timeout_seconds or self.context.request_timeout_seconds),
            priority=priority,
        )
        result.elapsed_ms = int((self._clock() - started) * 1000)
        self.stats.record(
            server_id=server_id,
            outcome=result.outcome,
            status_code=result.status_code,
            latency_ms=result.elapsed_ms,
        )
        return result

    def _proxy(
        self,
        server_id: str,
        method: str,
        path: str,
        *,
        headers: Mapping[str, Any],
        query: Any,
        body: Optional[str],
        cancel: threading.Event,
        timeout_seconds: int,
        priority: int,
    ) -> ProxyResult:
        try:
            self.resolve_target(server_id)
        except TargetUnavailableError as exc:
            logger.info("Rejecting proxy call: %s", exc)
            return ProxyResult.error(OUTCOME_UNAVAILABLE, str(exc))

        endpoint = self.registry.find_endpoint(server_id, method, path)
        if endpoint is None:
            return ProxyResult.error(
                OUTCOME_NOT_FOUND,
                f"No endpoint {method.upper()} {path} registered on server '{server_id}'",
            )
        if endpoint.auth_required and not header_value(dict(headers), "authorization"):
            return ProxyResult.error(OUTCOME_UNAUTHORIZED, "Authentication required")

        # EnqueueError propagates: the caller turns it into a server error.
        request = self.channel.enqueue(
            server_id,
            method,
            path,
            headers=strip_hop_by_hop(headers),
            query=query,
            body=body,
            timeout_seconds=timeout_seconds,
            priority=priority,
        )
        logger.debug("Proxying %s %s to '%s' as %s", method, path, server_id, request.request_id)

        response = self.wait_for_response(request.request_id, timeout_seconds, cancel)
        if response is not None:
            return ProxyResult.from_response(response)
        if cancel.is_set():
            logger.debug("Client went away; stopped polling for %s", request.request_id)
            return ProxyResult.error(OUTCOME_CANCELLED, "Client disconnected", request.request_id)
        logger.warning(
            "Request %s to '%s' got no response within %ss",
            request.request_id,
            server_id,
            timeout_seconds,
        )
        return ProxyResult.error(
            OUTCOME_TIMEOUT,
            f"Request to server '{server_id}' timed out",
            request.request_id,
        )

    def wait_for_response(
        self,
        request_id: str,
        timeout_seconds: float,
        cancel: threading.Event,
    ) -> Optional[NetworkResponse]:
        """Poll the response table until an answer shows up, the budget runs out, or ``cancel`` fires."""
        deadline = self._clock() + float(timeout_seconds)
        interval = max(0.01, float(self.context.poll_interval))
        while True:
            try:
                response = self.channel.get_response(request_id)
            except SQLAlchemyError:
                logger.exception("Store error while polling for %s", request_id)
                response = None
            if response is not None:
                return response
            remaining = deadline - self._clock()
            if remaining <= 0:
                return None
            if cancel.wait(min(interval, remaining)):
                return None
