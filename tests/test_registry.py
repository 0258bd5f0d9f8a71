"""
Tests for server membership and addon bookkeeping.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from relay.models import NetworkRequest, ServerAddon
from relay.schemas import EndpointDescriptor, ServerDescriptor
from relay.services.registry import MembershipRegistry, build_openapi_fragment


class TestServerRegistration:
    """Registering, refreshing and removing servers."""

    def test_register_server_is_online(self, registry):
        registry.register_server(
            ServerDescriptor(server_id="game-1", server_type="backend", host="10.0.0.5", port=25565)
        )

        server = registry.get_server("game-1")
        assert server.status == "online"
        assert server.server_name == "game-1"
        assert server.port == 25565
        assert registry.is_online(server)
        assert [item.server_id for item in registry.list_online_servers()] == ["game-1"]

    def test_register_twice_updates_in_place(self, registry):
        registry.register_server(ServerDescriptor(server_id="game-1", max_players=10))
        registry.register_server(
            ServerDescriptor(server_id="game-1", server_name="Game One", max_players=50, metadata={"region": "eu"})
        )

        servers = registry.list_servers()
        assert len(servers) == 1
        assert servers[0].server_name == "Game One"
        assert servers[0].max_players == 50
        assert servers[0].metadata_json == {"region": "eu"}

    @pytest.mark.parametrize("server_id", ["network", "health", "Network"])
    def test_reserved_server_ids_are_rejected(self, registry, server_id):
        with pytest.raises(ValueError, match="reserved"):
            registry.register_server(ServerDescriptor(server_id=server_id))

    def test_descriptor_validates_identity(self):
        with pytest.raises(ValidationError):
            ServerDescriptor(server_id="  ")
        with pytest.raises(ValidationError):
            ServerDescriptor(server_id="a/b")
        with pytest.raises(ValidationError):
            ServerDescriptor(server_id="game-1", server_type="proxy")

    def test_list_online_servers_filters_by_role(self, registry):
        registry.register_server(ServerDescriptor(server_id="hub", server_type="hub"))
        registry.register_server(ServerDescriptor(server_id="game-1", server_type="backend"))
        registry.register_server(ServerDescriptor(server_id="game-2", server_type="backend"))

        backends = registry.list_online_servers("backend")
        assert [item.server_id for item in backends] == ["game-1", "game-2"]
        assert [item.server_id for item in registry.list_online_servers("HUB")] == ["hub"]

    def test_mark_offline_hides_server(self, registry):
        registry.register_server(ServerDescriptor(server_id="game-1"))

        assert registry.mark_offline("game-1") is True
        assert registry.list_online_servers() == []
        assert registry.get_server("game-1").status == "offline"
        assert registry.mark_offline("missing") is False

    def test_deregister_cascades(self, registry, register_backend, hub_channel, session_factory):
        """Removing a server takes its addons and queued requests with it."""
        register_backend()
        hub_channel.enqueue("game-1", "GET", "/v1/stats/alice")

        assert registry.deregister_server("game-1") is True

        assert registry.get_server("game-1") is None
        db = session_factory()
        try:
            assert db.query(ServerAddon).count() == 0
            assert db.query(NetworkRequest).count() == 0
        finally:
            db.close()
        assert registry.deregister_server("game-1") is False


class TestLiveness:
    """Heartbeats and the stale sweep."""

    def test_heartbeat_refreshes_and_reports_missing(self, registry, store_clock):
        registry.register_server(ServerDescriptor(server_id="game-1"))
        later = store_clock() + timedelta(seconds=30)

        assert registry.heartbeat("game-1", online_players=7, max_players=20, now=later) is True
        server = registry.get_server("game-1")
        assert server.online_players == 7
        assert server.max_players == 20
        assert server.last_heartbeat == later
        assert registry.heartbeat("missing") is False

    def test_silent_server_drops_out_of_online_list(self, registry, hub_context, store_clock):
        """Staleness applies at read time, before any sweep has run."""
        registry.register_server(ServerDescriptor(server_id="game-1"))
        later = store_clock() + timedelta(seconds=hub_context.stale_after_seconds + 1)

        assert registry.list_online_servers(now=later) == []
        assert registry.get_server("game-1").status == "online"

    def test_sweep_marks_stale_servers_offline(self, registry, hub_context, store_clock):
        registry.register_server(ServerDescriptor(server_id="game-1"))
        registry.register_server(ServerDescriptor(server_id="game-2"))
        later = store_clock() + timedelta(seconds=hub_context.stale_after_seconds + 1)
        registry.heartbeat("game-2", now=later)

        assert registry.sweep_stale_servers(now=later) == 1
        assert registry.get_server("game-1").status == "offline"
        assert registry.get_server("game-2").status == "online"

    def test_heartbeat_brings_server_back(self, registry, hub_context, store_clock):
        registry.register_server(ServerDescriptor(server_id="game-1"))
        later = store_clock() + timedelta(seconds=hub_context.stale_after_seconds + 1)
        registry.sweep_stale_servers(now=later)

        registry.heartbeat("game-1", now=later)

        assert [item.server_id for item in registry.list_online_servers(now=later)] == ["game-1"]

    def test_liveness_follows_store_clock(self, registry, hub_context, skew_host_clock):
        """A hub whose host clock runs ahead does not treat fresh servers as stale."""
        registry.register_server(ServerDescriptor(server_id="game-1"))
        skew_host_clock(hub_context.stale_after_seconds + 60)

        assert [item.server_id for item in registry.list_online_servers()] == ["game-1"]
        assert registry.is_online(registry.get_server("game-1"))
        assert registry.sweep_stale_servers() == 0
        assert registry.heartbeat("game-1") is True
        assert registry.get_server("game-1").status == "online"


class TestAddons:
    """Addon registration and endpoint lookup."""

    def test_register_addon_derives_openapi_fragment(self, registry, register_backend):
        register_backend(
            endpoints=[
                EndpointDescriptor(path="/v1/stats/{player}", methods=["get"], summary="Player stats"),
                EndpointDescriptor(path="/v1/kick", methods=["POST"], auth_required=True),
            ]
        )

        addon = registry.list_addons("game-1")[0]
        assert addon.openapi_spec["info"] == {"title": "stats API", "version": "1.0.0"}
        assert addon.openapi_spec["paths"]["/v1/stats/{player}"]["get"]["summary"] == "Player stats"
        assert addon.openapi_spec["paths"]["/v1/kick"]["post"]["security"] == [{"bearerAuth": []}]

    def test_reregistering_addon_replaces_endpoints(self, registry, register_backend):
        register_backend(endpoints=[EndpointDescriptor(path="/v1/old", methods=["GET"])])
        registry.register_addon("game-1", "stats", [{"path": "/v1/new", "methods": ["POST"]}], version="2.0.0")

        addons = registry.list_addons("game-1")
        assert len(addons) == 1
        assert addons[0].addon_version == "2.0.0"
        assert [item["path"] for item in addons[0].endpoints] == ["/v1/new"]
        assert registry.find_endpoint("game-1", "GET", "/v1/old") is None
        assert registry.find_endpoint("game-1", "POST", "/v1/new") is not None

    def test_find_endpoint_matches_template_and_method(self, registry, register_backend):
        register_backend()

        endpoint = registry.find_endpoint("game-1", "get", "/v1/stats/alice")
        assert endpoint.path == "/v1/stats/{player}"
        assert registry.find_endpoint("game-1", "POST", "/v1/stats/alice") is None
        assert registry.find_endpoint("game-1", "GET", "/v1/stats/alice/extra") is None
        assert registry.find_endpoint("game-2", "GET", "/v1/stats/alice") is None

    def test_disabled_addon_is_ignored(self, registry, register_backend):
        register_backend()
        registry.register_addon(
            "game-1", "stats", [EndpointDescriptor(path="/v1/stats/{player}")], enabled=False
        )

        assert registry.list_addons("game-1") == []
        assert len(registry.list_addons("game-1", include_disabled=True)) == 1
        assert registry.find_endpoint("game-1", "GET", "/v1/stats/alice") is None

    def test_endpoint_descriptor_validation(self):
        with pytest.raises(ValidationError):
            EndpointDescriptor(path="no-slash")
        with pytest.raises(ValidationError):
            EndpointDescriptor(path="/x", methods=["TRACE"])
        assert EndpointDescriptor(path="/x", methods=["get", "GET", "post"]).methods == ["GET", "POST"]

    def test_openapi_fragment_merges_methods_per_path(self):
        fragment = build_openapi_fragment(
            "inventory",
            "1.2.0",
            [EndpointDescriptor(path="/items", methods=["GET", "POST"])],
        )
        assert set(fragment["paths"]["/items"]) == {"get", "post"}

    def test_registry_instances_share_the_store(self, registry, make_context):
        registry.register_server(ServerDescriptor(server_id="game-1"))
        other = MembershipRegistry(make_context("game-9"))

        assert other.get_server("game-1") is not None
