import asyncio, logging
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .settings import Settings, settings as default_settings
from .api import router as api_router
from .bridge import HubBridge, HubConfig
from .db import AuditLog
from .realtime import Broadcaster
from .results import ErrorKind, Fail
from .sse import device_event, sse_stream

def create_app(bridge: Optional[HubBridge] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, "INFO"))

    if bridge is None:
        bridge = HubBridge(settings, audit=AuditLog(settings.DB_URL))
    broadcaster = Broadcaster()
    bridge.on_state_change(lambda device: broadcaster.publish(device_event(device)))

    app = FastAPI(title="Hub Bridge", version="0.1.0")
    app.state.bridge = bridge
    app.state.broadcaster = broadcaster
    app.include_router(api_router)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    @app.on_event("startup")
    async def on_start():
        if bridge.audit is not None:
            bridge.audit.init()
        if not (settings.HA_TOKEN and settings.AUTO_CONNECT):
            return

        try:
            config = HubConfig(url=settings.HA_URL, token=settings.HA_TOKEN,
                               auto_discovery=settings.HA_AUTO_DISCOVERY)
        except ValueError as e:
            logging.getLogger("startup").error("Not connecting at startup, bad HA settings: %s", e)
            return

        async def configure_with_retry():
            log = logging.getLogger("startup")
            delay = 2
            while True:
                result = await bridge.configure(config)
                if result.ok:
                    log.info("Initial configure succeeded: %s", result.text)
                    return
                if isinstance(result, Fail) and result.kind is ErrorKind.AUTHENTICATION:
                    log.error("Initial configure rejected: %s; not retrying", result.text)
                    return
                log.warning("configure failed: %s; retrying in %ss", result.text, delay)
                await asyncio.sleep(delay)
                delay = min(delay * 2, 60)

        # in the background so startup doesn't crash on DNS/connectivity issues
        app.state.startup_task = asyncio.create_task(configure_with_retry())

    @app.on_event("shutdown")
    async def on_stop():
        task = getattr(app.state, "startup_task", None)
        if task is not None:
            task.cancel()
        await bridge.disconnect()
        if bridge.audit is not None:
            bridge.audit.dispose()

    @app.get("/api/v1/status/stream")
    async def stream():
        return sse_stream(broadcaster.register())

    @app.get("/")
    def root():
        return {"name": "hub-bridge", "status": "ok", "connected": bridge.is_configured()}

    return app

app = create_app()
