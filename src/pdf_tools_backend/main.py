from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import artifacts
from .dependencies import job_store, preview_renderer, settings
from .middleware import RequestLoggingMiddleware, configure_logging
from .models import HealthResponse
from .operations import routers

API_PREFIXES = ("/pdf", "/api/pdf")

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.logging.level)
    job_store.start()
    logger.info("PDF tools backend started (work dir %s)", job_store.root)
    try:
        yield
    finally:
        preview_renderer.shutdown()
        job_store.stop()


app = FastAPI(title="PDF Tools API", version="0.1.0", lifespan=lifespan)

allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    if exc.status_code == 405:
        message = "method not allowed"
    return JSONResponse(status_code=exc.status_code, content={"error": message}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "invalid request") if errors else "invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.get("/health", response_model=HealthResponse)
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


for prefix in API_PREFIXES:
    for router in routers:
        app.include_router(router, prefix=prefix)

app.include_router(artifacts.router)
