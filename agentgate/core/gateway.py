"""FastAPI app entry."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from agentgate.adapters.openai_compat.router import error_body, router as openai_router
from agentgate.bridge.http_bridge import HttpAgentBridge
from agentgate.bridge.interface import AgentBridge
from agentgate.config.settings import Settings, get_settings
from agentgate.core.debug_sink import DebugSink, FileDebugSink
from agentgate.core.errors import AgentGateError
from agentgate.storage import create_store
from agentgate.storage.kv import TranscriptStore
from agentgate.util.logger import configure_logging, logger


def create_app(
    settings: Settings | None = None,
    *,
    bridge: AgentBridge | None = None,
    store: TranscriptStore | None = None,
    sink: DebugSink | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(title=settings.app_name)
    app.state.settings = settings
    app.state.bridge = bridge or HttpAgentBridge(settings)
    app.state.store = store or create_store(settings)
    if sink is None:
        sink = FileDebugSink(settings.debug_dir) if settings.debug else DebugSink()
    app.state.sink = sink

    app.include_router(openai_router, prefix="/v1")
    # Cursor 一类客户端会省略 /v1
    app.include_router(openai_router)

    @app.exception_handler(AgentGateError)
    async def agentgate_error_handler(request: Request, exc: AgentGateError) -> JSONResponse:
        logger.warning("request failed path=%s code=%s error=%s", request.url.path, exc.code, exc)
        return JSONResponse(status_code=exc.status_code, content=error_body(str(exc) or exc.code, exc.error_type, exc.code))

    @app.get("/health")
    def health() -> dict:
        logger.debug("health check")
        return {"status": "ok"}

    @app.on_event("shutdown")
    async def shutdown_cleanup() -> None:
        await app.state.bridge.aclose()
        app.state.sink.close()

    logger.info(
        "%s ready env=%s bridge=%s transcript_backend=%s debug=%s",
        settings.app_name,
        settings.env,
        settings.bridge_base_url,
        settings.transcript_backend,
        settings.debug,
    )
    return app


app = create_app()
