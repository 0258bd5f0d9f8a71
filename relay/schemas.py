from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from .models import HTTP_METHODS, SERVER_STATUSES, SERVER_TYPES


class EndpointDescriptor(BaseModel):
    path: str
    methods: List[str] = Field(default_factory=lambda: ["GET"])
    summary: str = ""
    description: str = ""
    auth_required: bool = False
    tags: List[str] = Field(default_factory=list)

    @field_validator("path")
    @classmethod
    def path_is_absolute(cls, value: str) -> str:
        cleaned = str(value or "").strip()
        if not cleaned.startswith("/"):
            raise ValueError("must start with '/'")
        return cleaned

    @field_validator("methods")
    @classmethod
    def methods_supported(cls, value: List[str]) -> List[str]:
        methods: List[str] = []
        for raw in value:
            method = str(raw or "").strip().upper()
            if method not in HTTP_METHODS:
                raise ValueError(f"unsupported method {raw!r}")
            if method not in methods:
                methods.append(method)
        if not methods:
            raise ValueError("at least one method is required")
        return methods


class ServerDescriptor(BaseModel):
    server_id: str
    server_name: Optional[str] = None
    server_type: str = "backend"
    host: Optional[str] = None
    port: Optional[int] = None
    online_players: int = 0
    max_players: int = 0
    status: str = "online"
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("server_id")
    @classmethod
    def server_id_present(cls, value: str) -> str:
        cleaned = str(value or "").strip()
        if not cleaned:
            raise ValueError("must not be empty")
        if len(cleaned) > 64 or "/" in cleaned:
            raise ValueError("must be at most 64 characters without '/'")
        return cleaned

    @field_validator("server_type")
    @classmethod
    def server_type_known(cls, value: str) -> str:
        cleaned = str(value or "").strip().lower()
        if cleaned not in SERVER_TYPES:
            raise ValueError(f"must be one of {', '.join(SERVER_TYPES)}")
        return cleaned

    @field_validator("status")
    @classmethod
    def status_known(cls, value: str) -> str:
        cleaned = str(value or "").strip().lower()
        if cleaned not in SERVER_STATUSES:
            raise ValueError(f"must be one of {', '.join(SERVER_STATUSES)}")
        return cleaned


class ServerOut(BaseModel):
    server_id: str
    server_name: str
    server_type: str
    host: Optional[str] = None
    port: Optional[int] = None
    online_players: int = 0
    max_players: int = 0
    status: str
    last_heartbeat: Optional[datetime] = None
    created_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_json")

    class Config:
        from_attributes = True


class AddonOut(BaseModel):
    server_id: str
    addon_name: str
    addon_version: Optional[str] = None
    enabled: bool = True
    endpoints: List[EndpointDescriptor] = Field(default_factory=list)
    openapi_spec: Optional[Dict[str, Any]] = None
    registered_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class QueueDepthOut(BaseModel):
    server_id: Optional[str] = None
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    timeout: int = 0
    responses: int = 0


class NodeStatusOut(BaseModel):
    server_id: str
    role: str
    online_servers: int
    queue: QueueDepthOut
    jobs: List[str] = Field(default_factory=list)
    proxy: Dict[str, Any] = Field(default_factory=dict)
