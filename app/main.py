"""
Main FastAPI application for the PocketLegal API.
Serves health, catalog, purchases/access, profile, documents and metrics.
"""
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.logging import configure_logging
from app.api.routes import content, documents, health, purchases, users
from app.utils.metrics import router as metrics_router

configure_logging()
logger = logging.getLogger("app.http")

app = FastAPI(
    title="PocketLegal API",
    description="Legal rights cards and document drafts, paid per item in USDC",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get(settings.request_id_header) or uuid4().hex
    start = time.time()
    response = await call_next(request)
    response.headers[settings.request_id_header] = request_id
    logger.info(
        "http_request",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "status_code": response.status_code,
            "latency_ms": round((time.time() - start) * 1000, 1),
        },
    )
    return response


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(content.router)
app.include_router(purchases.router)
app.include_router(users.router)
app.include_router(documents.router)
app.include_router(metrics_router)
