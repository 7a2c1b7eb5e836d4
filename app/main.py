"""
FastAPI application main module.
Middleware, error handling, background recalculation machinery and health checks.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import os
from contextlib import asynccontextmanager
from sqlalchemy import text
from app import database
from app.api.v1 import api_router
from app.config import CACHE_SETTINGS, SWEEP_SETTINGS
from app.database import Base
from app.jobs.queue import PriorityDelayQueue
from app.jobs.sweep import PeriodicRecalculationSweep
from app.jobs.worker_recalculation import RecalculationWorker
from app.services.errors import CampaignNotFound, ProgressError
from app.services.progress_cache import create_progress_cache
from app.services.recalculation import RecalculationService
from app.utils import setup_logging, get_logger
from app.utils.observability import REQUEST_ID_HEADER, ensure_request_id

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/app.log"),
    enable_console=True
)

logger = get_logger(__name__)

SERVICE_NAME = "broker-campaigns-backend"
SERVICE_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Starts the recalculation worker and the periodic sweep; stops both on shutdown.
    """
    logger.info("Application startup initiated")
    queue: PriorityDelayQueue | None = None
    worker: RecalculationWorker | None = None
    sweep: PeriodicRecalculationSweep | None = None
    try:
        logger.info("Creating database tables")
        Base.metadata.create_all(bind=database.engine)

        service: RecalculationService = app.state.recalculation_service
        queue = PriorityDelayQueue()
        app.state.recalculation_queue = queue
        worker = RecalculationWorker(queue, service)
        worker.start()
        app.state.recalculation_worker = worker

        if SWEEP_SETTINGS["enabled"]:
            sweep = PeriodicRecalculationSweep(service)
            sweep.start()
            app.state.recalculation_sweep = sweep
        else:
            logger.info("Periodic recalculation sweep disabled")
        logger.info("Application startup completed successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        if sweep is not None:
            sweep.stop()
        if worker is not None:
            worker.stop(timeout=float(SWEEP_SETTINGS["shutdown_timeout_seconds"]))
        if queue is not None:
            queue.shutdown()
        app.state.recalculation_worker = None
        app.state.recalculation_sweep = None
        logger.info("Application shutdown completed")

app = FastAPI(
    title="Broker Campaign Progress Backend",
    description="""
    Progress tracking for insurance broker incentive campaigns.
    
    ## Features
    * **Multi-criterion campaigns** - every criterion must be met (AND)
    * **Acceptance gate** - only policies linked after acceptance count
    * **Status reconciliation** - completed / active / cancelled derived from progress and window
    * **Background recalculation** - queued on policy registration, periodic sweep as backstop
    * **Admin correction** - bulk repair of inconsistent statuses
    
    ## Authentication
    Use Bearer token authentication with your API key:
    ```
    Authorization: Bearer <api_key>
    ```
    """,
    version=SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

# Shared across requests, the worker and the sweep; available even when lifespan is skipped
app.state.progress_cache = create_progress_cache()
app.state.recalculation_service = RecalculationService(cache=app.state.progress_cache)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    """
    request_id = ensure_request_id(request.headers)
    request.state.request_id = request_id
    request.state.start_time = time.time()
    
    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )
    
    response = await call_next(request)
    
    process_time = time.time() - request.state.start_time
    response.headers[REQUEST_ID_HEADER] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
    response.headers["X-Content-Type-Options"] = "nosniff"
    
    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )
    
    return response

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")
    
    logger.warning(
        "Request validation failed",
        errors=exc.errors(),
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )
    
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Request validation failed",
            "details": jsonable_errors(exc),
            "request_id": request_id
        }
    )

def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold the raised ValueError itself
    return [{k: (str(v) if k == "ctx" else v) for k, v in err.items()} for err in exc.errors()]

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")
    
    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )
    
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            "request_id": request_id
        },
        headers=getattr(exc, "headers", None)
    )

@app.exception_handler(CampaignNotFound)
async def campaign_not_found_handler(request: Request, exc: CampaignNotFound):
    request_id = getattr(request.state, "request_id", "unknown")
    return JSONResponse(
        status_code=404,
        content={"success": False, "message": exc.message, "request_id": request_id}
    )

@app.exception_handler(ProgressError)
async def progress_error_handler(request: Request, exc: ProgressError):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(
        "Progress engine error",
        error=exc.message,
        error_type=type(exc).__name__,
        campaign_id=exc.campaign_id,
        request_id=request_id
    )
    return JSONResponse(
        status_code=503,
        content={"success": False, "message": exc.message, "request_id": request_id}
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")
    
    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        url=str(request.url),
        method=request.method,
        exc_info=True
    )
    
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "request_id": request_id
        }
    )

@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": time.time(),
        "cache_backend": "redis" if CACHE_SETTINGS.get("use_redis") else "memory",
    }

@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
async def detailed_health_check():
    """Detailed health check with database, cache and background worker status."""
    health_status = {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": time.time(),
        "checks": {}
    }
    
    try:
        db = database.SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"
    
    cache = getattr(app.state, "progress_cache", None)
    health_status["checks"]["cache"] = cache.snapshot() if cache is not None else None
    
    worker = getattr(app.state, "recalculation_worker", None)
    sweep = getattr(app.state, "recalculation_sweep", None)
    queue = getattr(app.state, "recalculation_queue", None)
    health_status["checks"]["worker"] = "running" if worker is not None and worker.is_running() else "stopped"
    health_status["checks"]["sweep"] = "running" if sweep is not None and sweep.is_running() else "stopped"
    if queue is not None:
        snap = queue.snapshot()
        health_status["checks"]["queue"] = {k: v for k, v in snap.items() if k in {"depth", "ready", "scheduled", "coalesced"}}
    
    return health_status

@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "Broker Campaign Progress API",
        "version": SERVICE_VERSION,
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }

app.include_router(api_router, prefix="/api/v1")

if __name__ == "__main__":
    import uvicorn
    
    logger.info("Starting development server")
    
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["app"],
        log_level="info",
        access_log=True
    )
