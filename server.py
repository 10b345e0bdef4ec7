# server.py
# FastAPI entrypoint: `uvicorn server:app --reload`

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from gofresh.app_config import AppConfig, load_config
from gofresh.clock import Clock, system_clock
from gofresh.errors import MarketplaceError
from gofresh.fastapi.auth_api import router as auth_router
from gofresh.fastapi.buyer_api import router as buyer_router
from gofresh.fastapi.farmer_api import router as farmer_router
from gofresh.fastapi.marketplace_api import router as marketplace_router
from gofresh.fastapi.notifications_api import router as notifications_router
from gofresh.logging_setup import configure_logging
from gofresh.mongo import ensure_indexes, init_mongo
from gofresh.services.razorpay_client import RazorpayClient

logger = structlog.stdlib.get_logger()


def create_app(
    config: Optional[AppConfig] = None,
    mongo_client: Optional[Any] = None,
    clock: Optional[Clock] = None,
    razorpay: Optional[RazorpayClient] = None,
) -> FastAPI:
    """
    Build the API. Every collaborator can be handed in, which is how the tests
    swap in mongomock, a fixed clock and a fake payment client.
    """
    config = config or load_config()
    configure_logging(config.log_level, config.log_json)
    db = init_mongo(config, client=mongo_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_indexes(db)
        logger.info("api_started", db=config.mongo_db_name)
        yield

    app = FastAPI(title="GoFresh Marketplace API", version="1.0.0", lifespan=lifespan)
    app.state.config = config
    app.state.clock = clock or system_clock
    app.state.razorpay = razorpay or RazorpayClient.from_config(config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MarketplaceError)
    async def _marketplace_error(request: Request, exc: MarketplaceError):
        return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.message})

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"ok": False, "error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(PyMongoError)
    async def _mongo_error(request: Request, exc: PyMongoError):
        logger.error("mongo_error", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=503, content={"ok": False, "error": "Service temporarily unavailable, please try again"})

    # --- include routers ---
    app.include_router(auth_router)
    app.include_router(marketplace_router)
    app.include_router(farmer_router)
    app.include_router(buyer_router)
    app.include_router(notifications_router)

    # --- diagnostics ---
    @app.get("/_health")
    def _health():
        return {"ok": True, "service": "gofresh-marketplace", "ts": int(datetime.now(tz=timezone.utc).timestamp())}

    return app


app = create_app()
