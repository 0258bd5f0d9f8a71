from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Union

from ..schemas import EndpointDescriptor
from .codec import ParamValue, header_value
from .routing import match_template, normalize_path


@dataclass
class LocalRequest:
    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, ParamValue] = field(default_factory=dict)
    body: Optional[str] = None
    path_params: dict[str, str] = field(default_factory=dict)
    request_id: Optional[str] = None

    def header(self, name: str) -> Optional[str]:
        return header_value(self.headers, name)

    def query_value(self, name: str, default: Optional[str] = None) -> Optional[str]:
        value = self.query.get(name)
        if isinstance(value, list):
            return value[0] if value else default
        return default if value is None else value

    def json(self) -> Any:
        # Raises ValueError on a malformed body; the processor records that as a failure.
        if not self.body:
            return None
        return json.loads(self.body)


@dataclass
class LocalResponse:
    status_code: int = 200
    body: Optional[str] = None
    content_type: str = "application/json"
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def json(cls, payload: Any, status_code: int = 200) -> "LocalResponse":
        return cls(status_code=status_code, body=json.dumps(payload), content_type="application/json")

    @classmethod
    def text(cls, payload: str, status_code: int = 200) -> "LocalResponse":
        return cls(status_code=status_code, body=payload, content_type="text/plain")


HandlerResult = Union[LocalResponse, dict, list, str, None]
Handler = Callable[[LocalRequest], HandlerResult]


@dataclass
class _Route:
    method: str
    template: str
    handler: Handler
    descriptor: EndpointDescriptor


def _coerce(result: HandlerResult) -> LocalResponse:
    if isinstance(result, LocalResponse):
        return result
    if result is None:
        return LocalResponse(status_code=204, body=None)
    if isinstance(result, str):
        return LocalResponse.text(result)
    return LocalResponse.json(result)


class LocalHandlerRegistry:
    """Plain method+template -> handler mapping for endpoints served by this process."""

    def __init__(self) -> None:
        self._routes: list[_Route] = []

    def register_endpoint(
        self,
        method: str,
        path_template: str,
        handler: Handler,
        *,
        auth_required: bool = False,
        summary: str = "",
        description: str = "",
        tags: Iterable[str] = (),
    ) -> EndpointDescriptor:
        descriptor = EndpointDescriptor(
            path=normalize_path(path_template),
            methods=[method],
            summary=summary,
            description=description,
            auth_required=auth_required,
            tags=list(tags),
        )
        http_method = descriptor.methods[0]
        for route in self._routes:
            if route.method == http_method and route.template == descriptor.path:
                raise ValueError(f"Endpoint already registered: {http_method} {descriptor.path}")
        self._routes.append(_Route(http_method, descriptor.path, handler, descriptor))
        return descriptor

    def endpoints(self) -> list[EndpointDescriptor]:
        """One descriptor per template, methods merged, in registration order."""
        merged: dict[str, EndpointDescriptor] = {}
        for route in self._routes:
            existing = merged.get(route.template)
            if existing is None:
                merged[route.template] = route.descriptor.model_copy(deep=True)
                continue
            if route.method not in existing.methods:
                existing.methods.append(route.method)
            existing.auth_required = existing.auth_required or route.descriptor.auth_required
        return list(merged.values())

    def resolve(self, method: str, path: str) -> tuple[Optional[_Route], dict[str, str], bool]:
        """Returns (route, path params, path_known)."""
        wanted = str(method or "").strip().upper()
        path_known = False
        for route in self._routes:
            params = match_template(route.template, path)
            if params is None:
                continue
            path_known = True
            if route.method == wanted:
                return route, params, True
        return None, {}, path_known

    def has_route(self, method: str, path: str) -> bool:
        route, _, _ = self.resolve(method, path)
        return route is not None

    def dispatch(self, request: LocalRequest) -> LocalResponse:
        """Run the matching handler synchronously; handler exceptions propagate."""
        route, params, path_known = self.resolve(request.method, request.path)
        if route is None:
            if path_known:
                return LocalResponse.json({"error": "Method not allowed"}, status_code=405)
            return LocalResponse.json({"error": "Endpoint not found"}, status_code=404)
        request.path_params = params
        return _coerce(route.handler(request))
