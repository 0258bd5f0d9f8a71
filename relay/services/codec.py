from __future__ import annotations

import json
from typing import Any, Iterable, Mapping, Optional, Union

ParamValue = Union[str, list[str]]

# Never replayed across the relay; they describe the hub<->client hop only.
HOP_BY_HOP_HEADERS = {
    "connection",
    "content-length",
    "host",
    "keep-alive",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}


def strip_hop_by_hop(headers: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    return {
        key: value
        for key, value in (headers or {}).items()
        if str(key or "").strip().lower() not in HOP_BY_HOP_HEADERS
    }


def encode_headers(headers: Optional[Mapping[str, Any]]) -> dict[str, str]:
    """Header map with string keys and values, ready for a JSON column."""
    encoded: dict[str, str] = {}
    for key, value in (headers or {}).items():
        name = str(key or "").strip()
        if not name:
            continue
        encoded[name] = "" if value is None else str(value)
    return encoded


def header_value(headers: Mapping[str, str], name: str) -> Optional[str]:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def decode_headers(raw: Any) -> dict[str, str]:
    data = _load_json(raw)
    if not isinstance(data, dict):
        return {}
    return {str(key): "" if value is None else str(value) for key, value in data.items()}


def encode_query(params: Union[Mapping[str, Any], Iterable[tuple[str, Any]], None]) -> dict[str, ParamValue]:
    """Fold query parameters into a JSON-friendly map.

    Accepts a mapping or a sequence of ``(key, value)`` pairs. A key seen once keeps
    a plain string value; a repeated key (or a list value) becomes a list.
    """
    if params is None:
        return {}
    items = params.items() if isinstance(params, Mapping) else params
    encoded: dict[str, ParamValue] = {}
    for key, value in items:
        name = str(key)
        values = [str(item) for item in value] if isinstance(value, (list, tuple)) else [str(value)]
        if name in encoded:
            existing = encoded[name]
            merged = existing if isinstance(existing, list) else [existing]
            merged.extend(values)
            encoded[name] = merged
        elif len(values) == 1 and not isinstance(value, (list, tuple)):
            encoded[name] = values[0]
        else:
            encoded[name] = values
    return encoded


def decode_query(raw: Any) -> dict[str, ParamValue]:
    data = _load_json(raw)
    if not isinstance(data, dict):
        return {}
    decoded: dict[str, ParamValue] = {}
    for key, value in data.items():
        if isinstance(value, list):
            decoded[str(key)] = [str(item) for item in value]
        else:
            decoded[str(key)] = "" if value is None else str(value)
    return decoded


def query_pairs(params: Mapping[str, ParamValue]) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        if isinstance(value, list):
            pairs.extend((key, item) for item in value)
        else:
            pairs.append((key, value))
    return pairs


def _load_json(raw: Any) -> Any:
    # JSON columns hand back parsed objects; text columns on older schemas do not.
    if raw is None:
        return {}
    if isinstance(raw, (bytes, str)):
        try:
            return json.loads(raw or "{}")
        except ValueError:
            return {}
    return raw
