import os
from pathlib import Path


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or "=" not in stripped:
                continue
            key, value = stripped.split("=", 1)
            key = key.strip()
            if not key or key in os.environ:
                continue
            cleaned = value.strip().strip('"').strip("'")
            os.environ[key] = cleaned
    except OSError:
        return


def _load_env() -> None:
    explicit = os.getenv("RELAY_ENV_FILE", "").strip()
    if explicit:
        _load_env_file(Path(explicit))
        return
    current = Path(__file__).resolve()
    for candidate in (Path.cwd() / ".env", current.parents[2] / ".env"):
        _load_env_file(candidate)


_load_env()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _default_database_url() -> str:
    explicit_path = os.getenv("RELAY_DB_PATH", "").strip()
    if explicit_path:
        return f"sqlite:///{Path(explicit_path).as_posix()}"
    dev_db = (Path(__file__).resolve().parents[2] / "relay.db").resolve()
    return f"sqlite:///{dev_db.as_posix()}"


DATABASE_URL = os.getenv("DATABASE_URL", _default_database_url())
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "20"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "3600"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

RELAY_SERVER_ID = os.getenv("RELAY_SERVER_ID", "hub").strip() or "hub"
RELAY_SERVER_NAME = os.getenv("RELAY_SERVER_NAME", RELAY_SERVER_ID).strip() or RELAY_SERVER_ID
RELAY_SERVER_ROLE = os.getenv("RELAY_SERVER_ROLE", "hub").strip().lower() or "hub"
RELAY_HOST = os.getenv("RELAY_HOST", "127.0.0.1").strip() or None
RELAY_PORT = int(os.getenv("RELAY_PORT", "8000"))
RELAY_MAX_PLAYERS = int(os.getenv("RELAY_MAX_PLAYERS", "100"))

RELAY_HEARTBEAT_INTERVAL_SECONDS = float(os.getenv("RELAY_HEARTBEAT_INTERVAL_SECONDS", "30"))
RELAY_STALE_AFTER_SECONDS = float(os.getenv("RELAY_STALE_AFTER_SECONDS", "120"))
RELAY_SWEEP_INTERVAL_SECONDS = float(os.getenv("RELAY_SWEEP_INTERVAL_SECONDS", "30"))
RELAY_POLL_INTERVAL_SECONDS = float(os.getenv("RELAY_POLL_INTERVAL_SECONDS", "2"))
RELAY_REQUEST_TIMEOUT_SECONDS = int(os.getenv("RELAY_REQUEST_TIMEOUT_SECONDS", "30"))
RELAY_MAX_RETRIES = int(os.getenv("RELAY_MAX_RETRIES", "3"))
RELAY_RETRY_BACKOFF_SECONDS = float(os.getenv("RELAY_RETRY_BACKOFF_SECONDS", "0.5"))
RELAY_CLAIM_BATCH_SIZE = int(os.getenv("RELAY_CLAIM_BATCH_SIZE", "10"))

RELAY_RETENTION_INTERVAL_SECONDS = float(os.getenv("RELAY_RETENTION_INTERVAL_SECONDS", "3600"))
RELAY_REQUEST_RETENTION_HOURS = int(os.getenv("RELAY_REQUEST_RETENTION_HOURS", "24"))
RELAY_METRICS_RETENTION_DAYS = int(os.getenv("RELAY_METRICS_RETENTION_DAYS", "30"))
# Hubs run the sweeps by default; there is no election between several hubs.
RELAY_RUN_MAINTENANCE = _env_bool(
    "RELAY_RUN_MAINTENANCE", "true" if RELAY_SERVER_ROLE == "hub" else "false"
)

RELAY_LOCAL_FORWARD_URL = os.getenv("RELAY_LOCAL_FORWARD_URL", "").strip()
RELAY_LOCAL_FORWARD_TIMEOUT_SECONDS = int(os.getenv("RELAY_LOCAL_FORWARD_TIMEOUT_SECONDS", "10"))
