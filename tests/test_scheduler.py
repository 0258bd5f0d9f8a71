"""
Tests for the periodic background jobs.
"""

import threading

from relay.services.scheduler import PeriodicJob


class TestPeriodicJob:
    def test_runs_repeatedly_until_stopped(self):
        ticks = []
        done = threading.Event()

        def tick():
            ticks.append(1)
            if len(ticks) >= 3:
                done.set()

        job = PeriodicJob("ticker", 0.01, tick)
        job.start()
        assert done.wait(5)
        job.stop()

        assert not job.running
        count = len(ticks)
        done.wait(0.1)
        assert len(ticks) == count

    def test_failing_tick_does_not_kill_the_job(self):
        calls = []
        done = threading.Event()

        def tick():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("store unavailable")
            done.set()

        job = PeriodicJob("flaky", 0.01, tick)
        job.start()
        try:
            assert done.wait(5)
        finally:
            job.stop()
        assert len(calls) >= 2

    def test_initial_delay_defers_first_run(self):
        calls = []
        job = PeriodicJob("delayed", 0.01, lambda: calls.append(1), initial_delay=10)
        job.start()
        job.stop()

        assert calls == []

    def test_start_is_idempotent(self):
        job = PeriodicJob("once", 10, lambda: None, initial_delay=10)
        job.start()
        first = job._thread
        job.start()
        try:
            assert job._thread is first
        finally:
            job.stop()

    def test_run_once_swallows_and_logs(self, caplog):
        job = PeriodicJob("manual", 1, lambda: 1 / 0)
        job.run_once()
        assert "Job 'manual' failed" in caplog.text

    def test_start_after_timed_out_stop_does_not_double_up(self, caplog):
        """A run that outlives stop() keeps its thread; start() will not add a second loop."""
        entered = threading.Event()
        release = threading.Event()
        calls = []

        def tick():
            calls.append(threading.current_thread())
            entered.set()
            release.wait(5)

        job = PeriodicJob("slow", 0.01, tick)
        job.start()
        assert entered.wait(5)
        first = job._thread

        job.stop(timeout=0.05)
        assert job.running
        job.start()

        try:
            assert job._thread is first
            assert "still finishing its last run" in caplog.text
        finally:
            release.set()
            job.stop()

        assert not job.running
        assert job._thread is None
        assert set(calls) == {first}
