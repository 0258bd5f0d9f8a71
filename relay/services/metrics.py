from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..db import store_now
from ..models import NetworkMetric

logger = logging.getLogger(__name__)

METRIC_REQUEST_PROCESSED_MS = "request_processed_ms"
METRIC_ONLINE_PLAYERS = "online_players"


def record_metric(
    session_factory: sessionmaker,
    *,
    server_id: str,
    metric_type: str,
    value: float,
    metadata: Optional[dict[str, Any]] = None,
) -> bool:
    """Best-effort metric write; a store error is logged and swallowed."""
    db: Session = session_factory()
    try:
        db.add(
            NetworkMetric(
                server_id=server_id,
                metric_type=metric_type,
                metric_value=float(value),
                metadata_json=metadata or {},
                recorded_at=store_now(db),
            )
        )
        db.commit()
        return True
    except SQLAlchemyError:
        db.rollback()
        logger.warning("Failed to record %s metric for server '%s'", metric_type, server_id)
        return False
    finally:
        db.close()


def purge_metrics(db: Session, *, older_than_days: int, now: Optional[datetime] = None) -> int:
    cutoff = (now or store_now(db)) - timedelta(days=older_than_days)
    return (
        db.query(NetworkMetric)
        .filter(NetworkMetric.recorded_at < cutoff)
        .delete(synchronize_session=False)
    )
