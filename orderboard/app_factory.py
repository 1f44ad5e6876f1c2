# orderboard/app_factory.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .context import AppContext, build_context
from .http_routes import http_router
from .settings import Settings, load_settings
from .ws_bridge import router as ws_router

logger = logging.getLogger(__name__)


def _setup_logging(level_name: str = "INFO"):
    level = logging.getLevelName((level_name or "INFO").upper())
    fmt = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    logging.basicConfig(level=level, format=fmt, datefmt=datefmt)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("google").setLevel(logging.WARNING)


def create_app(context: Optional[AppContext] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application. A prepared ``context`` (tests, sandbox) is used
    as is; otherwise one is built from ``settings`` when the app starts.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = context.settings if context is not None else (settings or load_settings())
        _setup_logging(cfg.log_level)
        ctx = context if context is not None else build_context(cfg)
        app.state.context = ctx
        ctx.open()
        logger.info("Server starting (sandbox=%s, ready=%s)", cfg.sandbox_mode, ctx.ready)
        try:
            yield
        finally:
            logger.info("Server shutting down")
            ctx.close()

    app = FastAPI(title="Production Order Board", lifespan=lifespan)
    app.include_router(http_router)
    app.include_router(ws_router)
    return app
