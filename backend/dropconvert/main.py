"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dropconvert.api.routes import router
from dropconvert.config import CORS_ORIGINS, ENGINE_CORE, ENGINE_WORKDIR, logger as config_logger
from dropconvert.conversion.orchestrator import ConversionOrchestrator, Engine
from dropconvert.engine.adapter import EngineAdapter

logging.getLogger("uvicorn").setLevel(logging.INFO)


def create_app(engine: Optional[Engine] = None) -> FastAPI:
    """Build the app. The engine is created here once and owned by the orchestrator."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        orchestrator = ConversionOrchestrator(engine if engine is not None else EngineAdapter())
        app.state.orchestrator = orchestrator
        await orchestrator.start(ENGINE_CORE, ENGINE_WORKDIR)
        config_logger.info("Converter API started (status=%s)", orchestrator.status.value)
        yield
        orchestrator.engine.close()
        config_logger.info("Converter API shutting down")

    app = FastAPI(
        title="Drop Converter API",
        description="Convert a dropped media file with an embedded engine, with progress tracking.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from dropconvert.config import HOST, PORT
    uvicorn.run("dropconvert.main:app", host=HOST, port=PORT, reload=True)
