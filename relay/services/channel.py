"""Request/response queue on the shared store.

The only write that several processes may race on is the claim
(``pending -> processing``). It is a single conditional ``UPDATE ... WHERE
status = 'pending'``; whoever sees one affected row owns the request, everyone
else moves on. All other transitions are guarded the same way so a terminal
row is never rewritten.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..context import RelayContext
from ..db import store_now
from ..errors import EnqueueError
from ..models import (
    HTTP_METHODS,
    REQUEST_COMPLETED,
    REQUEST_FAILED,
    REQUEST_PENDING,
    REQUEST_PROCESSING,
    REQUEST_TERMINAL_STATUSES,
    REQUEST_TIMEOUT,
    NetworkRequest,
    NetworkResponse,
)
from .codec import decode_headers, decode_query, encode_headers, encode_query
from .metrics import purge_metrics

logger = logging.getLogger(__name__)


@dataclass
class ResponsePayload:
    status_code: int
    body: Optional[str] = None
    content_type: str = "application/json"
    headers: dict[str, str] = field(default_factory=dict)
    processed_time_ms: Optional[int] = None


def new_request_id() -> str:
    return uuid.uuid4().hex


def is_expired(request: NetworkRequest, now: datetime) -> bool:
    if request.expires_at is not None:
        return request.expires_at <= now
    if request.created_at is None:
        return False
    budget = timedelta(seconds=int(request.timeout_seconds or 0))
    return request.created_at + budget <= now


def _not_expired(now: datetime):
    # Rows written before expires_at existed are checked in Python after the fetch.
    return or_(NetworkRequest.expires_at.is_(None), NetworkRequest.expires_at > now)


class RequestChannel:
    def __init__(self, context: RelayContext):
        self.context = context

    def _session(self) -> Session:
        return self.context.session_factory()

    def enqueue(
        self,
        target_server_id: str,
        method: str,
        path: str,
        *,
        headers: Optional[Mapping[str, Any]] = None,
        query: Any = None,
        body: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
        priority: int = 0,
        max_retries: Optional[int] = None,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> NetworkRequest:
        """Insert a pending request.

        ``now`` overrides the store clock for the creation time; by default the
        store decides both ``created_at`` and the deadline in ``expires_at``.
        """
        http_method = str(method or "").strip().upper()
        if http_method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")
        timeout = int(timeout_seconds or self.context.request_timeout_seconds)
        row = NetworkRequest(
            request_id=request_id or new_request_id(),
            target_server_id=target_server_id,
            endpoint_path=path,
            http_method=http_method,
            headers=encode_headers(headers),
            query_params=encode_query(query),
            body=body,
            status=REQUEST_PENDING,
            priority=int(priority),
            timeout_seconds=timeout,
            retry_count=0,
            max_retries=int(self.context.max_retries if max_retries is None else max_retries),
        )
        db = self._session()
        try:
            created_at = now or store_now(db)
            row.created_at = created_at
            row.expires_at = created_at + timedelta(seconds=timeout)
            db.add(row)
            db.commit()
            db.refresh(row)
            db.expunge(row)
        except SQLAlchemyError as exc:
            db.rollback()
            raise EnqueueError(f"Could not enqueue request for '{target_server_id}': {exc}") from exc
        finally:
            db.close()
        logger.debug(
            "Enqueued request %s: %s %s -> '%s'",
            row.request_id,
            http_method,
            path,
            target_server_id,
        )
        return row

    def claim_next(self, server_id: str, worker_id: str) -> Optional[NetworkRequest]:
        """Atomically claim one pending request addressed to ``server_id``.

        Returns None when nothing live is pending or every candidate was
        claimed by another worker first. Expiry is judged on the store clock.
        """
        db = self._session()
        try:
            now = store_now(db)
            candidates = (
                db.query(NetworkRequest)
                .filter(
                    NetworkRequest.target_server_id == server_id,
                    NetworkRequest.status == REQUEST_PENDING,
                    _not_expired(now),
                )
                .order_by(NetworkRequest.priority.desc(), NetworkRequest.created_at.asc())
                .limit(max(1, int(self.context.claim_batch_size)))
                .all()
            )
            candidate_ids = [row.request_id for row in candidates if not is_expired(row, now)]
            db.expunge_all()

            for request_id in candidate_ids:
                claimed = (
                    db.query(NetworkRequest)
                    .filter(
                        NetworkRequest.request_id == request_id,
                        NetworkRequest.status == REQUEST_PENDING,
                    )
                    .update(
                        {
                            NetworkRequest.status: REQUEST_PROCESSING,
                            NetworkRequest.claimed_by: worker_id,
                            NetworkRequest.processed_at: now,
                        },
                        synchronize_session=False,
                    )
                )
                db.commit()
                if claimed != 1:
                    logger.debug("Lost claim race for request %s", request_id)
                    continue
                row = db.get(NetworkRequest, request_id)
                if row is None:
                    continue
                db.expunge(row)
                logger.debug("Worker %s claimed request %s", worker_id, request_id)
                return row
            return None
        finally:
            db.close()

    def complete(
        self,
        request: NetworkRequest,
        response: ResponsePayload,
        *,
        failed: bool = False,
    ) -> bool:
        """Record the response and finish the request in one transaction.

        Returns False (and discards the response) when the request already left
        ``processing``, e.g. because the timeout sweep got there first. Store
        errors propagate so the caller can retry.
        """
        final_status = REQUEST_FAILED if failed else REQUEST_COMPLETED
        db = self._session()
        try:
            now = store_now(db)
            updated = (
                db.query(NetworkRequest)
                .filter(
                    NetworkRequest.request_id == request.request_id,
                    NetworkRequest.status == REQUEST_PROCESSING,
                )
                .update(
                    {
                        NetworkRequest.status: final_status,
                        NetworkRequest.processed_at: now,
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                db.rollback()
                logger.warning(
                    "Discarding late response for request %s (no longer processing)",
                    request.request_id,
                )
                return False
            db.add(
                NetworkResponse(
                    request_id=request.request_id,
                    server_id=self.context.server_id,
                    status_code=int(response.status_code),
                    headers=encode_headers(response.headers),
                    body=response.body,
                    content_type=response.content_type or "application/json",
                    processed_time_ms=response.processed_time_ms,
                    created_at=now,
                )
            )
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.warning("Response for request %s already exists; discarding", request.request_id)
                return False
            return True
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def bump_retry(self, request_id: str) -> None:
        db = self._session()
        try:
            db.query(NetworkRequest).filter(NetworkRequest.request_id == request_id).update(
                {NetworkRequest.retry_count: NetworkRequest.retry_count + 1},
                synchronize_session=False,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.warning("Could not bump retry count for request %s", request_id)
        finally:
            db.close()

    def get_request(self, request_id: str) -> Optional[NetworkRequest]:
        db = self._session()
        try:
            row = db.get(NetworkRequest, request_id)
            if row is not None:
                db.expunge(row)
            return row
        finally:
            db.close()

    def get_response(self, request_id: str) -> Optional[NetworkResponse]:
        db = self._session()
        try:
            row = db.query(NetworkResponse).filter(NetworkResponse.request_id == request_id).first()
            if row is not None:
                db.expunge(row)
            return row
        finally:
            db.close()

    def sweep_timeouts(self, *, now: Optional[datetime] = None) -> int:
        """Flip every open request past its deadline to ``timeout``.

        ``now`` overrides the store clock.
        """
        db = self._session()
        swept = 0
        try:
            now = now or store_now(db)
            open_rows = (
                db.query(NetworkRequest)
                .filter(
                    NetworkRequest.status.in_((REQUEST_PENDING, REQUEST_PROCESSING)),
                    or_(NetworkRequest.expires_at.is_(None), NetworkRequest.expires_at <= now),
                )
                .all()
            )
            expired = [row.request_id for row in open_rows if is_expired(row, now)]
            db.expunge_all()
            for request_id in expired:
                swept += (
                    db.query(NetworkRequest)
                    .filter(
                        NetworkRequest.request_id == request_id,
                        NetworkRequest.status.in_((REQUEST_PENDING, REQUEST_PROCESSING)),
                    )
                    .update(
                        {NetworkRequest.status: REQUEST_TIMEOUT, NetworkRequest.processed_at: now},
                        synchronize_session=False,
                    )
                )
            db.commit()
        finally:
            db.close()
        if swept:
            logger.info("Timed out %d request(s)", swept)
        return swept

    def purge_expired(self, *, now: Optional[datetime] = None) -> dict[str, int]:
        db = self._session()
        try:
            now = now or store_now(db)
            cutoff = now - timedelta(hours=self.context.request_retention_hours)
            requests_deleted = (
                db.query(NetworkRequest)
                .filter(
                    NetworkRequest.status.in_(REQUEST_TERMINAL_STATUSES),
                    NetworkRequest.created_at < cutoff,
                )
                .delete(synchronize_session=False)
            )
            responses_deleted = (
                db.query(NetworkResponse)
                .filter(NetworkResponse.created_at < cutoff)
                .delete(synchronize_session=False)
            )
            metrics_deleted = purge_metrics(
                db, older_than_days=self.context.metrics_retention_days, now=now
            )
            db.commit()
        finally:
            db.close()
        result = {
            "requests": int(requests_deleted or 0),
            "responses": int(responses_deleted or 0),
            "metrics": int(metrics_deleted or 0),
        }
        if any(result.values()):
            logger.info("Retention cleanup removed %s", result)
        return result

    def queue_depth(self, server_id: Optional[str] = None) -> dict[str, int]:
        db = self._session()
        try:
            query = db.query(NetworkRequest.status, func.count(NetworkRequest.request_id))
            if server_id:
                query = query.filter(NetworkRequest.target_server_id == server_id)
            depth = {status: 0 for status in (REQUEST_PENDING, REQUEST_PROCESSING) + REQUEST_TERMINAL_STATUSES}
            for status, count in query.group_by(NetworkRequest.status).all():
                depth[str(status)] = int(count)
            responses = db.query(func.count(NetworkResponse.id))
            if server_id:
                responses = responses.filter(NetworkResponse.server_id == server_id)
            depth["responses"] = int(responses.scalar() or 0)
            return depth
        finally:
            db.close()


def request_headers(request: NetworkRequest) -> dict[str, str]:
    return decode_headers(request.headers)


def request_query(request: NetworkRequest) -> dict[str, Any]:
    return decode_query(request.query_params)
