from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from starlette.exceptions import HTTPException as StarletteHTTPException
from dishka.integrations.fastapi import setup_dishka

from core.container import container
from core.exception_handler import (
    http_exception_handler,
    starlette_exception_handler,
    custom_exception_handler
)
from core.exceptions import BaseCustomException
from streams.router import router as streams_router

VERSION = "0.4.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # stops the push socket session and flushes pending observations
    await app.state.dishka_container.close()


app = FastAPI(
    title="Mint Stream Benchmark",
    version=VERSION,
    description="gRPC vs websocket latency benchmark for new token mints",
    lifespan=lifespan,
)

setup_dishka(container, app)

app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(StarletteHTTPException, starlette_exception_handler)
app.add_exception_handler(BaseCustomException, custom_exception_handler)
app.add_exception_handler(Exception, custom_exception_handler)

app.include_router(streams_router)


@app.get("/")
async def root():
    """
    Root endpoint.

    Returns
    -------
    dict
        Application information
    """
    return {
        "name": "Mint Stream Benchmark",
        "version": VERSION,
        "description": "gRPC vs websocket latency benchmark for new token mints",
        "endpoints": {
            "benchmark": "/api/streams/benchmark",
            "report": "/api/streams/benchmark/report",
            "wss_status": "/api/streams/wss/status",
            "docs": "/docs"
        }
    }


@app.get("/health")
async def health():
    return {"status": "healthy", "version": VERSION}
