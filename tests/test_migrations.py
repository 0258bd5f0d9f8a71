"""
Tests for schema creation and in-place upgrades of older stores.
"""

from sqlalchemy import inspect, text

from relay.db import build_engine
from relay.migrations import ensure_schema


class TestEnsureSchema:
    def test_creates_all_tables(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'fresh.db'}")
        try:
            ensure_schema(engine)
            tables = set(inspect(engine).get_table_names())
        finally:
            engine.dispose()

        assert {"servers", "server_addons", "request_queue", "response_queue", "network_metrics"} <= tables

    def test_is_idempotent(self, engine):
        ensure_schema(engine)
        ensure_schema(engine)

    def test_upgrades_legacy_queue_table(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'legacy.db'}")
        try:
            with engine.begin() as connection:
                connection.execute(
                    text(
                        "CREATE TABLE request_queue ("
                        "request_id VARCHAR(64) PRIMARY KEY, target_server_id VARCHAR(64) NOT NULL, "
                        "endpoint_path VARCHAR(512) NOT NULL, http_method VARCHAR(8) NOT NULL, "
                        "headers TEXT, query_params TEXT, body TEXT, created_at DATETIME, "
                        "status VARCHAR(16) NOT NULL, priority INTEGER, timeout_seconds INTEGER)"
                    )
                )
                connection.execute(
                    text(
                        "CREATE TABLE server_addons ("
                        "id INTEGER PRIMARY KEY AUTOINCREMENT, server_id VARCHAR(64) NOT NULL, "
                        "addon_name VARCHAR(128) NOT NULL, addon_version VARCHAR(32), enabled BOOLEAN, "
                        "endpoints TEXT NOT NULL, registered_at DATETIME, updated_at DATETIME)"
                    )
                )

            ensure_schema(engine)

            inspector = inspect(engine)
            queue_columns = {col["name"] for col in inspector.get_columns("request_queue")}
            addon_columns = {col["name"] for col in inspector.get_columns("server_addons")}
        finally:
            engine.dispose()

        assert {"claimed_by", "retry_count", "max_retries", "processed_at", "expires_at"} <= queue_columns
        assert "openapi_spec" in addon_columns
