import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from .context import RelayContext
from .core.config import LOG_LEVEL
from .db import SessionLocal
from .node import RelayNode
from .routes import network, proxy


def create_app(node: Optional[RelayNode] = None, *, start_node: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.node is None:
            app.state.node = RelayNode(RelayContext.from_config(SessionLocal))
        if start_node:
            app.state.node.start()
        try:
            yield
        finally:
            if start_node:
                app.state.node.stop()

    app = FastAPI(title="Relay Network API", version="0.1.0", lifespan=lifespan)
    app.state.node = node

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.get("/health")
    def health_check():
        current = app.state.node
        return {
            "status": "ok",
            "server_id": current.context.server_id if current else None,
            "role": current.context.role if current else None,
        }

    @app.head("/health")
    def health_check_head():
        return Response(status_code=200)

    app.include_router(network.router, prefix="/network", tags=["network"])
    # Catch-all; must stay last.
    app.include_router(proxy.router, tags=["proxy"])
    return app


logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = create_app()
