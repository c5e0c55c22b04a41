from __future__ import annotations

import logging
from typing import Optional, Sequence

from fastapi import FastAPI, Header, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from logdrain.access_log_middleware import AccessLogMiddleware
from logdrain.config import Settings
from logdrain.controller import Controller
from logdrain.ingest import DeliveryHandler
from logdrain.ingest_queue import IngestionQueue
from logdrain.metrics import COUNTERS, Counters, build_registry
from logdrain.signature import SignatureVerifier
from logdrain.sinks import LogSink, build_sinks

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings,
    sinks: Optional[Sequence[LogSink]] = None,
    counters: Counters = COUNTERS,
) -> FastAPI:
    """
    Wire the drain together: queue, controller, sinks and the HTTP routes.

    ``sinks`` defaults to whatever the settings enable; tests pass their own.
    The controller is initialized on startup (a sink that cannot start aborts
    the server) and drained on shutdown.
    """
    if sinks is None:
        sinks = build_sinks(settings, counters=counters)

    queue = IngestionQueue()
    controller = Controller(queue, sinks, sink_timeout=settings.sink_timeout, counters=counters)
    handler = DeliveryHandler(
        verifier=SignatureVerifier(settings.vercel_secret, counters=counters),
        queue=queue,
        verify_token=settings.vercel_verify,
        counters=counters,
    )

    registry, http_metrics = build_registry(counters, settings.metrics_prefix, queue_depth=queue.qsize)

    app = FastAPI(title="logdrain")
    app.add_middleware(AccessLogMiddleware, http_metrics=http_metrics)
    app.state.settings = settings
    app.state.queue = queue
    app.state.controller = controller
    app.state.handler = handler
    app.state.counters = counters
    app.state.registry = registry

    # ----------------------------
    # Lifecycle
    # ----------------------------
    @app.on_event("startup")
    async def _startup():
        await controller.init()
        controller.start()
        logger.info("listening for drain deliveries on %s:%d", settings.host, settings.port)

    @app.on_event("shutdown")
    async def _shutdown():
        logger.info("shutting down, %d record(s) still queued", queue.qsize())
        await controller.shutdown()

    # ----------------------------
    # Routes
    # ----------------------------
    @app.post("/")
    def root():
        return Response(status_code=200)

    @app.get("/health")
    def health():
        return Response(status_code=200)

    @app.post("/vercel")
    async def ingest(request: Request, x_vercel_signature: Optional[str] = Header(default=None)):
        body = await request.body()
        ack, _failures = handler.handle_delivery(body, x_vercel_signature)
        return Response(status_code=ack.status_code, headers=ack.headers())

    if settings.enable_metrics:
        @app.get("/metrics")
        def metrics():
            return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    return app
