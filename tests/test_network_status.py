"""
Tests for the network status CLI.
"""

import json
import sys
from unittest.mock import MagicMock, patch

import pytest

from scripts import network_status

SERVERS = [
    {
        "server_id": "game-1",
        "server_type": "backend",
        "status": "online",
        "host": "10.0.0.5",
        "port": 25565,
        "online_players": 3,
        "max_players": 20,
    }
]
QUEUE = {"pending": 2, "processing": 1, "completed": 5, "failed": 0, "timeout": 1, "responses": 5}
ADDONS = [
    {
        "server_id": "game-1",
        "addon_name": "stats",
        "addon_version": "1.0.0",
        "enabled": True,
        "endpoints": [{"path": "/v1/kick", "methods": ["POST"], "auth_required": True}],
    }
]


def _fake_get(url, params=None, timeout=None):
    payloads = {"/network/servers": SERVERS, "/network/queue": QUEUE, "/network/addons": ADDONS}
    for suffix, payload in payloads.items():
        if url.endswith(suffix):
            return MagicMock(status_code=200, json=MagicMock(return_value=payload))
    return MagicMock(status_code=404, text="missing")


class TestNetworkStatus:
    def test_plain_output(self, capsys):
        argv = ["network_status.py", "--api-base", "http://hub:8000/", "--addons"]
        with patch.object(sys, "argv", argv), patch.object(network_status.requests, "get", side_effect=_fake_get):
            assert network_status.main() == 0

        output = capsys.readouterr().out
        assert "Servers (1):" in output
        assert "game-1" in output and "players 3/20" in output
        assert "pending=2" in output and "timeout=1" in output
        assert "/v1/kick [auth]" in output

    def test_json_output(self, capsys):
        argv = ["network_status.py", "--json", "--role", "backend", "--online-only"]
        with patch.object(sys, "argv", argv), patch.object(
            network_status.requests, "get", side_effect=_fake_get
        ) as get:
            network_status.main()

        payload = json.loads(capsys.readouterr().out)
        assert payload == {"servers": SERVERS, "queue": QUEUE}
        assert get.call_args_list[0].kwargs["params"] == {"online_only": "true", "role": "backend"}

    def test_http_error_exits(self):
        with patch.object(network_status.requests, "get", return_value=MagicMock(status_code=503, text="down")):
            with pytest.raises(SystemExit, match="503"):
                network_status.fetch("http://hub:8000", "/network/servers")

    def test_empty_tables(self):
        assert network_status.format_servers([]) == ["  (no servers registered)"]
        assert network_status.format_addons([]) == ["  (no addons registered)"]
