import asyncio
import logging
import threading

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from ..errors import EnqueueError
from .deps import get_gateway

logger = logging.getLogger(__name__)

router = APIRouter()

DISCONNECT_CHECK_SECONDS = 0.25
_RESPONSE_MANAGED_HEADERS = {"content-type", "content-length"}


@router.api_route(
    "/{server_id}/{path:path}",
    methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    include_in_schema=False,
)
async def proxy_request(server_id: str, path: str, request: Request):
    gateway = get_gateway(request)
    raw_body = await request.body()
    body = raw_body.decode("utf-8", errors="replace") if raw_body else None

    cancel = threading.Event()
    task = asyncio.ensure_future(
        run_in_threadpool(
            gateway.proxy,
            server_id,
            request.method,
            "/" + path,
            headers=dict(request.headers),
            query=request.query_params.multi_items(),
            body=body,
            cancel=cancel,
        )
    )
    try:
        while not task.done():
            if await request.is_disconnected():
                cancel.set()
                break
            await asyncio.wait({task}, timeout=DISCONNECT_CHECK_SECONDS)
        result = await task
    except EnqueueError as exc:
        logger.error("Could not queue %s /%s for '%s': %s", request.method, path, server_id, exc)
        return JSONResponse(status_code=500, content={"detail": "Failed to queue request"})
    finally:
        cancel.set()

    headers = {
        key: value
        for key, value in result.headers.items()
        if key.lower() not in _RESPONSE_MANAGED_HEADERS
    }
    if result.content_type:
        # Sent exactly as the backend stored it.
        headers["content-type"] = result.content_type
    if result.request_id:
        headers["X-Relay-Request-Id"] = result.request_id
    return Response(content=result.body or "", status_code=result.status_code, headers=headers)
