from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from .db import Base
from . import models  # noqa: F401  registers the tables on Base.metadata


def _json_type(engine: Engine) -> str:
    return "JSONB" if engine.dialect.name == "postgresql" else "TEXT"


def ensure_schema(engine: Engine) -> None:
    try:
        Base.metadata.create_all(bind=engine)
    except OperationalError as exc:
        # Several nodes may start against the same fresh store at once.
        if "already exists" not in str(exc).lower():
            raise

    inspector = inspect(engine)
    tables = set(inspector.get_table_names())
    timestamp_type = "TIMESTAMP" if engine.dialect.name == "postgresql" else "DATETIME"

    if "request_queue" in tables:
        columns = {col["name"] for col in inspector.get_columns("request_queue")}
        alters = []
        if "claimed_by" not in columns:
            alters.append("ALTER TABLE request_queue ADD COLUMN claimed_by VARCHAR(128)")
        if "retry_count" not in columns:
            alters.append("ALTER TABLE request_queue ADD COLUMN retry_count INTEGER DEFAULT 0")
        if "max_retries" not in columns:
            alters.append("ALTER TABLE request_queue ADD COLUMN max_retries INTEGER DEFAULT 3")
        if "processed_at" not in columns:
            alters.append(f"ALTER TABLE request_queue ADD COLUMN processed_at {timestamp_type}")
        if "expires_at" not in columns:
            alters.append(f"ALTER TABLE request_queue ADD COLUMN expires_at {timestamp_type}")
        _apply_alters(engine, alters)

    if "server_addons" in tables:
        columns = {col["name"] for col in inspector.get_columns("server_addons")}
        alters = []
        if "openapi_spec" not in columns:
            alters.append(f"ALTER TABLE server_addons ADD COLUMN openapi_spec {_json_type(engine)}")
        _apply_alters(engine, alters)


def _apply_alters(engine: Engine, statements: list[str]) -> None:
    if not statements:
        return
    with engine.begin() as connection:
        for statement in statements:
            connection.execute(text(statement))
