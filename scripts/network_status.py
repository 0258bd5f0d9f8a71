from __future__ import annotations

import argparse
import json
import os
from typing import Any

import requests


def fetch(api_base: str, path: str, params: dict[str, Any] | None = None, timeout: float = 10.0) -> Any:
    url = f"{api_base.rstrip('/')}{path}"
    response = requests.get(url, params=params or {}, timeout=timeout)
    if response.status_code >= 400:
        raise SystemExit(f"{url} failed: {response.status_code} {response.text}")
    return response.json()


def format_servers(servers: list[dict[str, Any]]) -> list[str]:
    if not servers:
        return ["  (no servers registered)"]
    lines = []
    for item in servers:
        endpoint = f"{item.get('host') or '-'}:{item.get('port') or '-'}"
        lines.append(
            f"  {item['server_id']:<20} {item.get('server_type', ''):<8} {item.get('status', ''):<12} "
            f"{endpoint:<22} players {item.get('online_players', 0)}/{item.get('max_players', 0)}"
        )
    return lines


def format_queue(queue: dict[str, Any]) -> list[str]:
    keys = ("pending", "processing", "completed", "failed", "timeout", "responses")
    return ["  " + "  ".join(f"{key}={int(queue.get(key) or 0)}" for key in keys)]


def format_addons(addons: list[dict[str, Any]]) -> list[str]:
    lines = []
    for addon in addons:
        state = "enabled" if addon.get("enabled", True) else "disabled"
        lines.append(f"  {addon['server_id']}/{addon['addon_name']} v{addon.get('addon_version') or ''} ({state})")
        for endpoint in addon.get("endpoints") or []:
            methods = ",".join(endpoint.get("methods") or [])
            lock = " [auth]" if endpoint.get("auth_required") else ""
            lines.append(f"      {methods:<16} {endpoint.get('path', '')}{lock}")
    return lines or ["  (no addons registered)"]


def main() -> int:
    parser = argparse.ArgumentParser(description="Show relay network membership and queue state")
    parser.add_argument(
        "--api-base",
        default=os.getenv("RELAY_API_BASE", "http://127.0.0.1:8000"),
        help="Hub API base URL, e.g. http://127.0.0.1:8000",
    )
    parser.add_argument("--role", default="", help="Only list servers with this role (hub or backend)")
    parser.add_argument("--online-only", action="store_true", help="Hide servers that are not live")
    parser.add_argument("--addons", action="store_true", help="Also list registered addons and endpoints")
    parser.add_argument("--json", action="store_true", help="Print the raw JSON documents")
    args = parser.parse_args()

    params: dict[str, Any] = {"online_only": str(bool(args.online_only)).lower()}
    if args.role:
        params["role"] = args.role
    servers = fetch(args.api_base, "/network/servers", params)
    queue = fetch(args.api_base, "/network/queue")
    addons = fetch(args.api_base, "/network/addons") if args.addons else None

    if args.json:
        payload: dict[str, Any] = {"servers": servers, "queue": queue}
        if addons is not None:
            payload["addons"] = addons
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0

    lines = [f"Servers ({len(servers)}):", *format_servers(servers), "Queue:", *format_queue(queue)]
    if addons is not None:
        lines += ["Addons:", *format_addons(addons)]
    print("\n".join(lines))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
