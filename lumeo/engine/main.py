import asyncio
import os
import sqlite3
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from lumeo.common import config
from lumeo.common.errors import LumeoError
from lumeo.common.storage.client import create_persistence
from lumeo.common.utils.logger import LogBuffer, setup_logger
from lumeo.engine.api import routes
from lumeo.engine.core import Orchestrator
from lumeo.engine.utils.logger import logger

PORT = int(os.getenv("PORT", 8080))
security = HTTPBearer(auto_error=False)


def create_app(orchestrator: Orchestrator, api_token: Optional[str] = None, log_buffer: Optional[LogBuffer] = None) -> FastAPI:

    async def verify_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
        if api_token is None:
            return
        token = None

        # 1. Check Bearer Header
        if credentials:
            token = credentials.credentials

        # 2. Check Query Parameter (for browsers)
        if not token:
            token = request.query_params.get("token")

        if token != api_token:
            raise HTTPException(status_code=403, detail="Invalid authorization token")

    app = FastAPI(title="Lumeo Orchestrator", dependencies=[Depends(verify_token)])
    app.state.orchestrator = orchestrator
    app.state.log_buffer = log_buffer
    app.include_router(routes.router)

    @app.exception_handler(LumeoError)
    async def lumeo_error_handler(request: Request, exc: LumeoError):
        status_code = routes.status_for(exc)
        logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc}", extra={"event": "api_error"})
        return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": type(exc).__name__})

    @app.on_event("startup")
    async def startup():
        logger.info("Lumeo Orchestrator Online", extra={"event": "startup"})
        if orchestrator.persistence is None:
            return
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, orchestrator.restore)
        except (IOError, ValueError, sqlite3.Error) as e:
            logger.error(f"Failed to restore history: {e}", extra={"event": "restore_failed"})

    @app.on_event("shutdown")
    async def shutdown():
        if orchestrator.persistence is not None:
            try:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, orchestrator.snapshot)
            except (IOError, ValueError, sqlite3.Error) as e:
                logger.error(f"Failed to snapshot history: {e}", extra={"event": "snapshot_failed"})
        await orchestrator.close()
        logger.info("Lumeo Orchestrator stopped", extra={"event": "shutdown"})

    return app


def build_app() -> FastAPI:
    _, log_buffer = setup_logger("lumeo")
    orchestrator = Orchestrator(persistence=create_persistence(config.PERSISTENCE_BACKEND))
    if config.API_TOKEN is None:
        logger.warning("LUMEO_API_TOKEN is not set; API is unauthenticated", extra={"event": "auth_disabled"})
    return create_app(orchestrator, api_token=config.API_TOKEN, log_buffer=log_buffer)


if __name__ == "__main__":
    uvicorn.run(build_app(), host="0.0.0.0", port=PORT, log_config=None)
