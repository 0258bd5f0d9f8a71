"""
Tests for the in-process proxy counters.
"""

from relay.services.observability import ProxyStats


class TestProxyStats:
    def test_empty_snapshot(self):
        snapshot = ProxyStats().snapshot()
        assert snapshot["servers"] == {}
        assert snapshot["uptime_seconds"] >= 0

    def test_counts_outcomes_and_latency(self):
        stats = ProxyStats()
        stats.record(server_id="game-1", outcome="ok", status_code=200, latency_ms=10)
        stats.record(server_id="game-1", outcome="ok", status_code=201, latency_ms=30)
        stats.record(server_id="game-1", outcome="timeout", status_code=504, latency_ms=50)

        row = stats.snapshot()["servers"]["game-1"]
        assert row["requests"] == 3
        assert row["outcomes"] == {"ok": 2, "timeout": 1}
        assert row["success_rate"] == round(2 / 3, 6)
        assert row["latency_ms_avg"] == 30.0
        assert row["latency_ms_max"] == 50.0
        assert row["last_status"] == 504

    def test_blank_server_id_is_bucketed(self):
        stats = ProxyStats()
        stats.record(server_id="", outcome="unavailable", status_code=503, latency_ms=-5)

        row = stats.snapshot()["servers"]["unknown"]
        assert row["latency_ms_max"] == 0.0
