from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..node import RelayNode
from ..schemas import AddonOut, NodeStatusOut, QueueDepthOut, ServerOut
from .deps import get_node

router = APIRouter()


@router.get("/servers", response_model=List[ServerOut])
def list_servers(
    role: Optional[str] = Query(default=None),
    online_only: bool = Query(default=False),
    node: RelayNode = Depends(get_node),
):
    if online_only:
        servers = node.registry.list_online_servers(role)
    else:
        servers = node.registry.list_servers()
        if role:
            servers = [item for item in servers if item.server_type == role.strip().lower()]
    return [ServerOut.model_validate(item) for item in servers]


@router.get("/addons", response_model=List[AddonOut])
def list_addons(
    server_id: Optional[str] = Query(default=None),
    node: RelayNode = Depends(get_node),
):
    return [AddonOut.model_validate(item) for item in node.registry.list_addons(server_id)]


@router.get("/queue", response_model=QueueDepthOut)
def queue_depth(
    server_id: Optional[str] = Query(default=None),
    node: RelayNode = Depends(get_node),
):
    return QueueDepthOut(server_id=server_id, **node.channel.queue_depth(server_id))


@router.get("/status", response_model=NodeStatusOut)
def node_status(node: RelayNode = Depends(get_node)):
    return NodeStatusOut(
        server_id=node.context.server_id,
        role=node.context.role,
        online_servers=len(node.registry.list_online_servers()),
        queue=QueueDepthOut(**node.channel.queue_depth()),
        jobs=[job.name for job in node.jobs if job.running],
        proxy=node.gateway.stats.snapshot() if node.gateway is not None else {},
    )
