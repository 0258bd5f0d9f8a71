from sqlalchemy import (
    Column,
    String,
    DateTime,
    Float,
    Integer,
    Boolean,
    ForeignKey,
    JSON,
    Text,
    UniqueConstraint,
    Index,
    func,
)
from sqlalchemy.orm import relationship

from .db import Base

SERVER_TYPES = ("hub", "backend")
SERVER_STATUSES = ("online", "offline", "maintenance")
HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")

REQUEST_PENDING = "pending"
REQUEST_PROCESSING = "processing"
REQUEST_COMPLETED = "completed"
REQUEST_FAILED = "failed"
REQUEST_TIMEOUT = "timeout"
REQUEST_TERMINAL_STATUSES = (REQUEST_COMPLETED, REQUEST_FAILED, REQUEST_TIMEOUT)


class Server(Base):
    __tablename__ = "servers"

    server_id = Column(String(64), primary_key=True)
    server_name = Column(String(128), nullable=False)
    server_type = Column(String(16), nullable=False, index=True)
    host = Column(String(255), nullable=True)
    port = Column(Integer, nullable=True)
    online_players = Column(Integer, default=0)
    max_players = Column(Integer, default=0)
    status = Column(String(16), default="online", index=True)
    last_heartbeat = Column(DateTime, default=func.now(), index=True)
    created_at = Column(DateTime, default=func.now())
    metadata_json = Column("metadata", JSON, default=dict)

    addons = relationship(
        "ServerAddon", back_populates="server", cascade="all, delete", passive_deletes=True
    )
    requests = relationship(
        "NetworkRequest", back_populates="target_server", cascade="all, delete", passive_deletes=True
    )
    responses = relationship(
        "NetworkResponse", back_populates="server", cascade="all, delete", passive_deletes=True
    )
    metrics = relationship(
        "NetworkMetric", back_populates="server", cascade="all, delete", passive_deletes=True
    )


class ServerAddon(Base):
    __tablename__ = "server_addons"
    __table_args__ = (UniqueConstraint("server_id", "addon_name", name="uq_server_addon"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    server_id = Column(
        String(64), ForeignKey("servers.server_id", ondelete="CASCADE"), nullable=False
    )
    addon_name = Column(String(128), nullable=False, index=True)
    addon_version = Column(String(32), nullable=True)
    enabled = Column(Boolean, default=True, index=True)
    endpoints = Column(JSON, nullable=False, default=list)
    openapi_spec = Column(JSON, nullable=True)
    registered_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    server = relationship("Server", back_populates="addons")


class NetworkRequest(Base):
    __tablename__ = "request_queue"
    __table_args__ = (
        Index("idx_request_target_status", "target_server_id", "status"),
        Index("idx_request_priority_created", "priority", "created_at"),
    )

    request_id = Column(String(64), primary_key=True)
    target_server_id = Column(
        String(64), ForeignKey("servers.server_id", ondelete="CASCADE"), nullable=False
    )
    endpoint_path = Column(String(512), nullable=False)
    http_method = Column(String(8), nullable=False)
    headers = Column(JSON, default=dict)
    query_params = Column(JSON, default=dict)
    body = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now(), index=True)
    processed_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True, index=True)
    status = Column(String(16), default=REQUEST_PENDING, nullable=False)
    priority = Column(Integer, default=0)
    timeout_seconds = Column(Integer, default=30)
    retry_count = Column(Integer, default=0)
    max_retries = Column(Integer, default=3)
    claimed_by = Column(String(128), nullable=True)

    target_server = relationship("Server", back_populates="requests")


class NetworkResponse(Base):
    __tablename__ = "response_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(String(64), unique=True, nullable=False, index=True)
    server_id = Column(
        String(64), ForeignKey("servers.server_id", ondelete="CASCADE"), nullable=False, index=True
    )
    status_code = Column(Integer, nullable=False)
    headers = Column(JSON, default=dict)
    body = Column(Text, nullable=True)
    content_type = Column(String(128), default="application/json")
    processed_time_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=func.now(), index=True)

    server = relationship("Server", back_populates="responses")


class NetworkMetric(Base):
    __tablename__ = "network_metrics"
    __table_args__ = (Index("idx_metric_server_type", "server_id", "metric_type"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    server_id = Column(
        String(64), ForeignKey("servers.server_id", ondelete="CASCADE"), nullable=False
    )
    metric_type = Column(String(64), nullable=False, index=True)
    metric_value = Column(Float, nullable=False)
    metadata_json = Column("metadata", JSON, default=dict)
    recorded_at = Column(DateTime, default=func.now(), index=True)

    server = relationship("Server", back_populates="metrics")
