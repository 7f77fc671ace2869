import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

from dubbing.api.v1.router import api_router
from dubbing.core.config import settings
from dubbing.core.database import Base, engine
from dubbing.core.exceptions import APIException, ErrorCode
from dubbing.middleware.tracing import RequestTimingMiddleware, RequestTracingMiddleware, TraceIdFilter
from dubbing.models import job, source  # noqa: F401  register tables
from dubbing.schemas.error import ErrorResponse

VERSION = "1.0.0"

# Metrics
REQUEST_COUNT = Counter("http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"])
REQUEST_DURATION = Histogram("http_request_duration_seconds", "HTTP request duration")
ERROR_COUNT = Counter("http_errors_total", "Total HTTP errors", ["error_code", "status_code"])

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "development" else logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - [%(trace_id)s] %(message)s"
)
for handler in logging.getLogger().handlers:
    handler.addFilter(TraceIdFilter())
logger = logging.getLogger("dubbing-api")


@asynccontextmanager
async def lifespan(_: FastAPI):
    # Startup
    logger.info("Starting up Dubbing API...")
    Base.metadata.create_all(bind=engine)
    yield
    # Shutdown
    logger.info("Shutting down Dubbing API...")

app = FastAPI(
    title=settings.APP_NAME,
    description="Queues source videos for automatic dubbing and tracks the dubbing jobs",
    version=VERSION,
    debug=settings.DEBUG,
    docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT == "development" else None,
    lifespan=lifespan,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)

# Tracing wraps timing so the trace id is set when slow requests are logged
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(RequestTracingMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    process_time = time.time() - start_time
    REQUEST_DURATION.observe(process_time)
    REQUEST_COUNT.labels(method=request.method, endpoint=request.url.path, status=response.status_code).inc()

    logger.info(f"{request.method} {request.url.path} - {response.status_code} - {process_time:.3f}s")

    return response


def trace_id_of(request: Request):
    return getattr(request.state, "trace_id", None)


# Exception handlers
@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException):
    ERROR_COUNT.labels(error_code=exc.error_code.value, status_code=exc.status_code).inc()

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            code=exc.error_code.value,
            message=str(exc.detail),
            details=exc.details,
            trace_id=trace_id_of(request),
            timestamp=time.time()
        ).model_dump()
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    ERROR_COUNT.labels(error_code="HTTP_ERROR", status_code=exc.status_code).inc()

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            code=ErrorCode.INTERNAL_ERROR.value,
            message=str(exc.detail),
            trace_id=trace_id_of(request),
            timestamp=time.time()
        ).model_dump()
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    ERROR_COUNT.labels(error_code="UNHANDLED_ERROR", status_code=500).inc()
    logger.exception("Unhandled exception occurred")

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            code=ErrorCode.INTERNAL_ERROR.value,
            message="An unexpected error occurred",
            trace_id=trace_id_of(request),
            timestamp=time.time()
        ).model_dump()
    )


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "environment": settings.ENVIRONMENT,
        "version": VERSION
    }


@app.get("/metrics")
async def get_metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Include API router
app.include_router(api_router, prefix=settings.API_V1_STR)
