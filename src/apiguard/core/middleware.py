from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.applications import Starlette
from starlette.background import BackgroundTask, BackgroundTasks
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from starlette.types import ASGIApp

from ..modules.identity import resolve_client_ip
from .audit import RequestLogRecord
from .blocklist import BlockStatus
from .engine import DetectionEngine
from .logging_system import LoggerFactory


def client_identity(request: Request) -> str:
    """Resolve the caller once per request and cache it on ``request.state``."""
    identity = getattr(request.state, "client_identity", None)
    if identity is None:
        peer = request.client.host if request.client else None
        identity = resolve_client_ip(request.headers, peer)
        request.state.client_identity = identity
    return identity


def request_route(request: Request) -> str:
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def denial_response(status: BlockStatus) -> JSONResponse:
    return JSONResponse(status_code=403, content=status.to_response())


def _chain_background(response: Response, task: BackgroundTask) -> None:
    if response.background is None:
        response.background = task
    else:
        response.background = BackgroundTasks([response.background, task])


class BlockGateMiddleware(BaseHTTPMiddleware):
    """First stage: refuse clients on the blocklist before anything is counted."""

    def __init__(self, app: ASGIApp, engine: DetectionEngine) -> None:
        super().__init__(app)
        self.engine = engine

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        identity = client_identity(request)
        status = await self.engine.gate(identity)
        if status is None:
            return await call_next(request)

        response = denial_response(status)
        if self.engine.cfg.audit.save_records:
            record = RequestLogRecord(
                ip=identity,
                method=request.method,
                route=request_route(request),
                timestamp=datetime.now(timezone.utc),
                response_time_ms=0.0,
                status_code=403,
                user_agent=request.headers.get("user-agent"),
                attack_type=None,
            )
            _chain_background(response, BackgroundTask(self.engine.record, record))
        return response


class MonitorMiddleware(BaseHTTPMiddleware):
    """Second stage: count, classify and block; audit once the response is sent."""

    def __init__(self, app: ASGIApp, engine: DetectionEngine) -> None:
        super().__init__(app)
        self.engine = engine
        self.logger = LoggerFactory.get_logger("apiguard.middleware")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.time()
        identity = client_identity(request)
        route = request_route(request)

        attack_type = await self.engine.inspect(identity, route)

        response: Optional[Response] = None
        if attack_type is not None and self.engine.cfg.detection.enforce_on_trigger:
            status = await self.engine.gate(identity)
            if status is not None:
                self.logger.info("Denied %s on the request that tripped %s", identity, attack_type)
                response = denial_response(status)
        if response is None:
            response = await call_next(request)

        if self.engine.should_record(attack_type):
            status_code = response.status_code
            user_agent = request.headers.get("user-agent")
            method = request.method
            label = attack_type.value if attack_type is not None else None

            def write_record() -> None:
                self.engine.record(RequestLogRecord(
                    ip=identity,
                    method=method,
                    route=route,
                    timestamp=datetime.now(timezone.utc),
                    response_time_ms=round((time.time() - start) * 1000, 3),
                    status_code=status_code,
                    user_agent=user_agent,
                    attack_type=label,
                ))

            _chain_background(response, BackgroundTask(write_record))
        return response


def install(app: Starlette, engine: DetectionEngine) -> None:
    """Register both stages on a Starlette/FastAPI app, gate outermost."""
    # add_middleware prepends, so the last one added runs first
    app.add_middleware(MonitorMiddleware, engine=engine)
    app.add_middleware(BlockGateMiddleware, engine=engine)
