from fastapi import HTTPException, Request

from ..node import RelayNode
from ..services.gateway import Gateway


def get_node(request: Request) -> RelayNode:
    node = getattr(request.app.state, "node", None)
    if node is None:
        raise HTTPException(status_code=503, detail="Relay node is not running")
    return node


def get_gateway(request: Request) -> Gateway:
    node = get_node(request)
    if node.gateway is None:
        raise HTTPException(status_code=404, detail="This server does not proxy requests")
    return node.gateway
