from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any

_LATENCY_WINDOW = 600
_MAX_SERVER_KEYS = 256


def _percentile(values: list[float], pct: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    index = int(round((max(0.0, min(100.0, pct)) / 100.0) * (len(ordered) - 1)))
    return float(ordered[index])


def _safe_ratio(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return float(numerator) / float(denominator)


class ProxyStats:
    """In-process counters for proxied calls, keyed by target server."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()
        self._servers: dict[str, dict[str, Any]] = {}

    def _row(self, server_id: str) -> dict[str, Any]:
        key = str(server_id or "unknown").strip() or "unknown"
        if key not in self._servers and len(self._servers) >= _MAX_SERVER_KEYS:
            key = "__other__"
        row = self._servers.get(key)
        if row is None:
            row = {
                "requests": 0,
                "outcomes": {},
                "latency_ms_sum": 0.0,
                "latency_ms_max": 0.0,
                "latency_ms_window": deque(maxlen=_LATENCY_WINDOW),
                "last_status": 0,
                "last_seen_at": None,
            }
            self._servers[key] = row
        return row

    def record(self, *, server_id: str, outcome: str, status_code: int, latency_ms: float) -> None:
        latency = max(0.0, float(latency_ms or 0.0))
        with self._lock:
            row = self._row(server_id)
            row["requests"] += 1
            row["outcomes"][outcome] = int(row["outcomes"].get(outcome, 0)) + 1
            row["latency_ms_sum"] += latency
            row["latency_ms_max"] = max(float(row["latency_ms_max"]), latency)
            row["latency_ms_window"].append(latency)
            row["last_status"] = int(status_code or 0)
            row["last_seen_at"] = time.time()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            servers = {}
            for key, row in self._servers.items():
                requests = float(row["requests"] or 0)
                ok = float(row["outcomes"].get("ok", 0))
                servers[key] = {
                    "requests": int(row["requests"]),
                    "outcomes": dict(row["outcomes"]),
                    "success_rate": round(_safe_ratio(ok, requests), 6),
                    "latency_ms_avg": round(_safe_ratio(float(row["latency_ms_sum"]), requests), 3),
                    "latency_ms_p95": round(_percentile(list(row["latency_ms_window"]), 95.0), 3),
                    "latency_ms_max": round(float(row["latency_ms_max"]), 3),
                    "last_status": int(row["last_status"]),
                    "last_seen_at": row["last_seen_at"],
                }
        return {
            "started_at": self._started_at,
            "uptime_seconds": int(max(0, time.time() - self._started_at)),
            "servers": servers,
        }
