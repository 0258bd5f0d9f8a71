from __future__ import annotations

import json
import logging
import os
import socket
import time
import uuid
from typing import Callable, Optional

import requests
from sqlalchemy.exc import SQLAlchemyError

from ..context import RelayContext
from ..models import NetworkRequest
from .channel import RequestChannel, ResponsePayload, request_headers, request_query
from .codec import query_pairs, strip_hop_by_hop
from .handlers import LocalHandlerRegistry, LocalRequest, LocalResponse
from .metrics import METRIC_REQUEST_PROCESSED_MS, record_metric

logger = logging.getLogger(__name__)

OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_DISCARDED = "discarded"
OUTCOME_ABANDONED = "abandoned"


def _worker_id(server_id: str) -> str:
    return f"{server_id}@{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def _error_payload(exc: BaseException) -> str:
    return json.dumps({"error": "Internal server error", "message": str(exc)})


class Processor:
    """Backend side of the relay: claim, execute locally, answer."""

    def __init__(
        self,
        context: RelayContext,
        channel: RequestChannel,
        handlers: LocalHandlerRegistry,
        *,
        sleep: Callable[[float], None] = time.sleep,
        http: Optional[requests.Session] = None,
    ):
        self.context = context
        self.channel = channel
        self.handlers = handlers
        self.worker_id = _worker_id(context.server_id)
        self._sleep = sleep
        self._http = http

    def poll_once(self) -> Optional[str]:
        """Claim and process at most one request. Returns the outcome, or None if idle."""
        request = self.channel.claim_next(self.context.server_id, self.worker_id)
        if request is None:
            return None
        return self.process(request)

    def drain(self, limit: int = 50) -> int:
        processed = 0
        while processed < limit:
            if self.poll_once() is None:
                break
            processed += 1
        return processed

    def process(self, request: NetworkRequest) -> str:
        logger.debug(
            "Processing request %s: %s %s",
            request.request_id,
            request.http_method,
            request.endpoint_path,
        )
        started = time.perf_counter()
        failed = False
        try:
            local = self._execute(request)
            payload = ResponsePayload(
                status_code=local.status_code,
                body=local.body,
                content_type=local.content_type,
                headers=dict(local.headers or {}),
            )
        except Exception as exc:
            logger.exception("Request %s failed during local execution", request.request_id)
            failed = True
            payload = ResponsePayload(
                status_code=500,
                body=_error_payload(exc),
                content_type="application/json",
                headers={"Content-Type": "application/json"},
            )
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        payload.processed_time_ms = elapsed_ms

        outcome = self._write_with_retry(request, payload, failed=failed)
        if outcome in (OUTCOME_COMPLETED, OUTCOME_FAILED):
            record_metric(
                self.context.session_factory,
                server_id=self.context.server_id,
                metric_type=METRIC_REQUEST_PROCESSED_MS,
                value=elapsed_ms,
                metadata={"request_id": request.request_id, "status_code": payload.status_code},
            )
            logger.debug(
                "Request %s finished as %s with status %d in %dms",
                request.request_id,
                outcome,
                payload.status_code,
                elapsed_ms,
            )
        return outcome

    def _execute(self, request: NetworkRequest) -> LocalResponse:
        local_request = LocalRequest(
            method=request.http_method,
            path=request.endpoint_path,
            headers=request_headers(request),
            query=request_query(request),
            body=request.body,
            request_id=request.request_id,
        )
        if not self.handlers.has_route(local_request.method, local_request.path) and self.context.local_forward_url:
            return self._forward(local_request, timeout=request.timeout_seconds)
        return self.handlers.dispatch(local_request)

    def _forward(self, local_request: LocalRequest, timeout: Optional[int] = None) -> LocalResponse:
        """Replay the request against this server's own HTTP listener."""
        url = f"{self.context.local_forward_url.rstrip('/')}{local_request.path}"
        client = self._http or requests
        resp = client.request(
            local_request.method,
            url,
            params=query_pairs(local_request.query),
            headers=strip_hop_by_hop(local_request.headers),
            data=local_request.body.encode("utf-8") if local_request.body else None,
            timeout=min(
                int(timeout or self.context.local_forward_timeout_seconds),
                self.context.local_forward_timeout_seconds,
            ),
        )
        if resp.status_code >= 400:
            logger.warning("Local forward %s %s answered %d", local_request.method, url, resp.status_code)
        headers = {
            key: value
            for key, value in strip_hop_by_hop(resp.headers).items()
            if key.lower() != "content-encoding"
        }
        return LocalResponse(
            status_code=resp.status_code,
            body=resp.text,
            content_type=resp.headers.get("content-type", "application/json"),
            headers=headers,
        )

    def _write_with_retry(self, request: NetworkRequest, payload: ResponsePayload, *, failed: bool) -> str:
        max_retries = max(0, int(request.max_retries or 0))
        for attempt in range(max_retries + 1):
            try:
                written = self.channel.complete(request, payload, failed=failed)
            except SQLAlchemyError:
                logger.exception(
                    "Store error writing response for %s (attempt %d/%d)",
                    request.request_id,
                    attempt + 1,
                    max_retries + 1,
                )
                if attempt >= max_retries:
                    break
                self.channel.bump_retry(request.request_id)
                self._sleep(self.context.retry_backoff_seconds * (2 ** attempt))
                continue
            if not written:
                return OUTCOME_DISCARDED
            return OUTCOME_FAILED if failed else OUTCOME_COMPLETED
        logger.warning(
            "Abandoning request %s in processing after %d attempt(s); the timeout sweep will close it",
            request.request_id,
            max_retries + 1,
        )
        return OUTCOME_ABANDONED
