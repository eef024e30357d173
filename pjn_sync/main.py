"""
FastAPI application entry point
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pjn_sync.api.v1.api import api_router
from pjn_sync.core.config import settings
from pjn_sync.core.logger import logger
from pjn_sync.db.database import init_db
from pjn_sync.middleware.correlation import CorrelationMiddleware
from pjn_sync.services.task_queue import task_queue
from pjn_sync.utils.exceptions import PjnError


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.DATABASE_AUTO_CREATE:
        init_db()
    task_queue.start()
    logger.info("PJN Sync API started")
    yield
    task_queue.shutdown()
    logger.info("PJN Sync API shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan,
)

# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(api_router, prefix="/api/v1")

# ── Correlation ID middleware (must be added before CORS) ─────────────────────
app.add_middleware(CorrelationMiddleware)

# ── CORS ──────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)


# ── Error rendering ───────────────────────────────────────────────────────────

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info("Rejected invalid request", extra={"path": request.url.path, "errors": len(exc.errors())})
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "status": "ERROR",
            "error": "Invalid request",
            "code": "VALIDATION_ERROR",
            "details": [
                {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
                for err in exc.errors()
            ],
        },
    )


@app.exception_handler(PjnError)
async def pjn_error_handler(request: Request, exc: PjnError):
    logger.error("Unhandled pipeline error", extra={"path": request.url.path, "code": exc.code, "error": exc.message})
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=exc.to_response())


@app.get("/health")
def health_check():
    return {"status": "healthy"}
