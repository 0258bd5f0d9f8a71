"""
Shared fixtures for the relay test suite.

Every test gets its own file-backed SQLite store so that threads in the
concurrency tests see one database through separate connections.
"""

import threading
from datetime import datetime, timedelta

import pytest

import relay.db
from relay.context import RelayContext
from relay.db import build_engine, build_session_factory, store_now
from relay.migrations import ensure_schema
from relay.schemas import EndpointDescriptor, ServerDescriptor
from relay.services import channel as channel_module
from relay.services import metrics as metrics_module
from relay.services import registry as registry_module
from relay.services.channel import RequestChannel
from relay.services.registry import MembershipRegistry


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'relay-test.db'}")
    ensure_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def make_context(session_factory):
    """Factory for contexts with intervals short enough for tests."""

    def _make(server_id: str, role: str = "backend", **overrides) -> RelayContext:
        settings = {
            "heartbeat_interval": 0.05,
            "sweep_interval": 0.05,
            "poll_interval": 0.02,
            "request_timeout_seconds": 5,
            "retry_backoff_seconds": 0.0,
            "max_retries": 2,
        }
        settings.update(overrides)
        return RelayContext(session_factory=session_factory, server_id=server_id, role=role, **settings)

    return _make


@pytest.fixture
def hub_context(make_context):
    return make_context("hub", role="hub")


@pytest.fixture
def backend_context(make_context):
    return make_context("game-1")


@pytest.fixture
def registry(hub_context):
    return MembershipRegistry(hub_context)


@pytest.fixture
def hub_channel(hub_context):
    return RequestChannel(hub_context)


@pytest.fixture
def backend_channel(backend_context):
    return RequestChannel(backend_context)


@pytest.fixture
def register_backend(registry):
    """Register a live backend server with one addon of endpoints."""

    def _register(server_id="game-1", endpoints=None, addon_name="stats"):
        registry.register_server(ServerDescriptor(server_id=server_id, server_type="backend"))
        if endpoints is None:
            endpoints = [EndpointDescriptor(path="/v1/stats/{player}", methods=["GET"])]
        registry.register_addon(server_id, addon_name, endpoints)
        return server_id

    return _register


@pytest.fixture
def background():
    """Run callables on daemon threads and join them at teardown."""
    threads = []

    def _start(target, *args, **kwargs):
        thread = threading.Thread(target=target, args=args, kwargs=kwargs, daemon=True)
        thread.start()
        threads.append(thread)
        return thread

    yield _start
    for thread in threads:
        thread.join(timeout=10)


@pytest.fixture
def store_clock(session_factory):
    """Current time as the test store reports it."""

    def _now() -> datetime:
        db = session_factory()
        try:
            return store_now(db)
        finally:
            db.close()

    return _now


@pytest.fixture
def skew_host_clock(monkeypatch):
    """Shift ``datetime.now`` for the relay modules that deal in timestamps.

    Simulates a node whose host clock disagrees with the store.
    """

    def _skew(seconds: float) -> None:
        offset = timedelta(seconds=seconds)

        class SkewedDatetime(datetime):
            @classmethod
            def now(cls, tz=None):
                return datetime.now(tz) + offset

        for module in (relay.db, channel_module, metrics_module, registry_module):
            monkeypatch.setattr(module, "datetime", SkewedDatetime)

    return _skew
