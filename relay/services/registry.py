from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Union

from sqlalchemy.orm import Session

from ..context import RelayContext
from ..db import store_now
from ..models import Server, ServerAddon
from ..schemas import EndpointDescriptor, ServerDescriptor
from .routing import match_template

logger = logging.getLogger(__name__)

# Server ids that would shadow the hub's own routes under /{server_id}/...
RESERVED_SERVER_IDS = {"network", "health", "docs", "openapi.json"}

EndpointLike = Union[EndpointDescriptor, dict]


def build_openapi_fragment(addon_name: str, version: str, endpoints: list[EndpointDescriptor]) -> dict[str, Any]:
    paths: dict[str, Any] = {}
    for endpoint in endpoints:
        path_item = paths.setdefault(endpoint.path, {})
        for method in endpoint.methods:
            operation: dict[str, Any] = {
                "summary": endpoint.summary,
                "description": endpoint.description,
                "tags": list(endpoint.tags),
                "responses": {"200": {"description": "Successful operation"}},
            }
            if endpoint.auth_required:
                operation["security"] = [{"bearerAuth": []}]
            path_item[method.lower()] = operation
    return {
        "openapi": "3.0.0",
        "info": {"title": f"{addon_name} API", "version": version},
        "paths": paths,
    }


class MembershipRegistry:
    """Server and addon bookkeeping on top of the shared store."""

    def __init__(self, context: RelayContext):
        self.context = context

    def _session(self) -> Session:
        return self.context.session_factory()

    def store_time(self) -> datetime:
        db = self._session()
        try:
            return store_now(db)
        finally:
            db.close()

    def _stale_cutoff(self, db: Session, now: Optional[datetime] = None) -> datetime:
        return (now or store_now(db)) - timedelta(seconds=self.context.stale_after_seconds)

    def register_server(self, descriptor: ServerDescriptor, *, now: Optional[datetime] = None) -> Server:
        if descriptor.server_id.lower() in RESERVED_SERVER_IDS:
            raise ValueError(f"Server id '{descriptor.server_id}' is reserved")
        db = self._session()
        try:
            now = now or store_now(db)
            server = db.get(Server, descriptor.server_id)
            if server is None:
                server = Server(server_id=descriptor.server_id, created_at=now)
                db.add(server)
            server.server_name = descriptor.server_name or descriptor.server_id
            server.server_type = descriptor.server_type
            server.host = descriptor.host
            server.port = descriptor.port
            server.online_players = int(descriptor.online_players or 0)
            server.max_players = int(descriptor.max_players or 0)
            server.status = descriptor.status
            server.metadata_json = dict(descriptor.metadata or {})
            server.last_heartbeat = now
            db.commit()
            db.refresh(server)
            db.expunge(server)
        finally:
            db.close()
        logger.info(
            "Registered server '%s' as %s (%s)",
            descriptor.server_id,
            descriptor.server_type,
            descriptor.status,
        )
        return server

    def heartbeat(
        self,
        server_id: str,
        *,
        online_players: Optional[int] = None,
        max_players: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Refresh liveness. Returns False when the server row no longer exists."""
        db = self._session()
        try:
            server = db.get(Server, server_id)
            if server is None:
                return False
            server.last_heartbeat = now or store_now(db)
            server.status = "online"
            if online_players is not None:
                server.online_players = int(online_players)
            if max_players is not None:
                server.max_players = int(max_players)
            db.commit()
            return True
        finally:
            db.close()

    def mark_offline(self, server_id: str) -> bool:
        db = self._session()
        try:
            updated = (
                db.query(Server)
                .filter(Server.server_id == server_id)
                .update({Server.status: "offline"}, synchronize_session=False)
            )
            db.commit()
        finally:
            db.close()
        if updated:
            logger.info("Marked server '%s' as offline", server_id)
        return bool(updated)

    def deregister_server(self, server_id: str) -> bool:
        db = self._session()
        try:
            server = db.get(Server, server_id)
            if server is None:
                return False
            db.delete(server)
            db.commit()
        finally:
            db.close()
        logger.info("Deregistered server '%s'", server_id)
        return True

    def get_server(self, server_id: str) -> Optional[Server]:
        db = self._session()
        try:
            server = db.get(Server, server_id)
            if server is not None:
                db.expunge(server)
            return server
        finally:
            db.close()

    def is_online(self, server: Optional[Server], *, now: Optional[datetime] = None) -> bool:
        if server is None or server.status != "online":
            return False
        if server.last_heartbeat is None:
            return False
        cutoff = (now or self.store_time()) - timedelta(seconds=self.context.stale_after_seconds)
        return server.last_heartbeat >= cutoff

    def list_servers(self) -> list[Server]:
        db = self._session()
        try:
            servers = db.query(Server).order_by(Server.server_type, Server.server_id).all()
            db.expunge_all()
            return servers
        finally:
            db.close()

    def list_online_servers(self, role: Optional[str] = None, *, now: Optional[datetime] = None) -> list[Server]:
        db = self._session()
        try:
            query = db.query(Server).filter(
                Server.status == "online",
                Server.last_heartbeat >= self._stale_cutoff(db, now),
            )
            if role:
                query = query.filter(Server.server_type == str(role).strip().lower())
            servers = query.order_by(Server.server_type, Server.server_id).all()
            db.expunge_all()
            return servers
        finally:
            db.close()

    def sweep_stale_servers(self, *, now: Optional[datetime] = None) -> int:
        db = self._session()
        try:
            cutoff = self._stale_cutoff(db, now)
            flipped = (
                db.query(Server)
                .filter(Server.status == "online", Server.last_heartbeat < cutoff)
                .update({Server.status: "offline"}, synchronize_session=False)
            )
            db.commit()
        finally:
            db.close()
        if flipped:
            logger.info("Marked %d stale server(s) offline", flipped)
        return int(flipped or 0)

    def register_addon(
        self,
        server_id: str,
        addon_name: str,
        endpoints: Iterable[EndpointLike],
        *,
        version: str = "1.0.0",
        enabled: bool = True,
        openapi_spec: Optional[dict[str, Any]] = None,
    ) -> ServerAddon:
        name = str(addon_name or "").strip()
        if not name:
            raise ValueError("Addon name must not be empty")
        descriptors = [
            item if isinstance(item, EndpointDescriptor) else EndpointDescriptor.model_validate(item)
            for item in endpoints
        ]
        spec = openapi_spec if openapi_spec is not None else build_openapi_fragment(name, version, descriptors)
        payload = [item.model_dump() for item in descriptors]

        db = self._session()
        try:
            addon = (
                db.query(ServerAddon)
                .filter(ServerAddon.server_id == server_id, ServerAddon.addon_name == name)
                .first()
            )
            if addon is None:
                addon = ServerAddon(server_id=server_id, addon_name=name)
                db.add(addon)
            addon.addon_version = version
            addon.enabled = bool(enabled)
            # Wholesale replacement: the stored list always mirrors the latest call.
            addon.endpoints = payload
            addon.openapi_spec = spec
            addon.updated_at = store_now(db)
            db.commit()
            db.refresh(addon)
            db.expunge(addon)
        finally:
            db.close()
        logger.info(
            "Registered addon '%s' for server '%s' with %d endpoint(s)",
            name,
            server_id,
            len(payload),
        )
        return addon

    def list_addons(self, server_id: Optional[str] = None, *, include_disabled: bool = False) -> list[ServerAddon]:
        db = self._session()
        try:
            query = db.query(ServerAddon)
            if server_id:
                query = query.filter(ServerAddon.server_id == server_id)
            if not include_disabled:
                query = query.filter(ServerAddon.enabled.is_(True))
            addons = query.order_by(ServerAddon.server_id, ServerAddon.addon_name).all()
            db.expunge_all()
            return addons
        finally:
            db.close()

    def find_endpoint(self, server_id: str, method: str, path: str) -> Optional[EndpointDescriptor]:
        """First enabled endpoint of ``server_id`` whose template and method match."""
        wanted = str(method or "").strip().upper()
        for addon in self.list_addons(server_id):
            for raw in addon.endpoints or []:
                try:
                    endpoint = EndpointDescriptor.model_validate(raw)
                except ValueError:
                    logger.warning(
                        "Skipping malformed endpoint in addon '%s' of server '%s'",
                        addon.addon_name,
                        server_id,
                    )
                    continue
                if wanted in endpoint.methods and match_template(endpoint.path, path) is not None:
                    return endpoint
        return None
