"""
FastAPI application entry point.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from pdfxml import store
from pdfxml.config import get_settings
from pdfxml.routes import router

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )


async def _connect_and_probe(selector) -> None:
    await selector.persistent.connection.connect()
    selector.start()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # In-memory storage serves requests while the first connection is retried.
    selector = store.get_selector()
    startup = None
    if selector.persistent is not None:
        startup = asyncio.get_running_loop().create_task(_connect_and_probe(selector))
    try:
        yield
    finally:
        if startup is not None:
            startup.cancel()
            try:
                await startup
            except asyncio.CancelledError:
                pass
        await selector.stop()
        if selector.persistent is not None:
            await selector.persistent.connection.close()


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)
    app = FastAPI(title="PDF to XML Converter", version="0.1.0", lifespan=lifespan)

    @app.middleware("http")
    async def log_api_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        if request.url.path.startswith(settings.api_prefix):
            logger.info(
                "%s %s %d in %dms",
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - start) * 1000,
            )
        return response

    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()


def main() -> None:
    import uvicorn

    settings = get_settings()
    logger.info("Starting converter API on %s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="info")


if __name__ == "__main__":
    main()
