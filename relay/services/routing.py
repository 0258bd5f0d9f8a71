from __future__ import annotations

import re
from functools import lru_cache
from typing import Optional

_PARAM_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def normalize_path(path: str) -> str:
    normalized = "/" + "/".join(part for part in str(path or "").split("/") if part)
    return normalized


@lru_cache(maxsize=512)
def compile_template(template: str) -> re.Pattern:
    """Turn ``/v1/stats/{player}`` into an anchored regex with named groups."""
    normalized = normalize_path(template)
    pattern = ""
    position = 0
    for match in _PARAM_RE.finditer(normalized):
        pattern += re.escape(normalized[position : match.start()])
        pattern += f"(?P<{match.group(1)}>[^/]+)"
        position = match.end()
    pattern += re.escape(normalized[position:])
    return re.compile(f"^{pattern}$")


def match_template(template: str, path: str) -> Optional[dict[str, str]]:
    match = compile_template(template).match(normalize_path(path))
    if match is None:
        return None
    return match.groupdict()
