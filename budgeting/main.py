from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
import structlog

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from budgeting.config import settings
from budgeting.database import init_db, close_db, get_db
from budgeting.errors import BudgetError
from budgeting.logging_config import setup_logging
from budgeting.middleware.correlation import CorrelationIdMiddleware

# Import models so they are registered with Base.metadata
import budgeting.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("starting_budgeting", env=settings.ENVIRONMENT, version=settings.APP_VERSION)
    await init_db()
    yield
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Exception handlers. Every error leaves as
# {"error": {"code": "...", "message": "...", "details": ...}}
# ---------------------------------------------------------------------------

@app.exception_handler(BudgetError)
async def budget_error_handler(request: Request, exc: BudgetError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("budget_error", code=exc.code, message=exc.message)
    else:
        logger.info("budget_request_rejected", code=exc.code, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        detail = {"error": {"code": "HTTP_ERROR", "message": detail}}
    elif isinstance(detail, dict) and "error" not in detail:
        detail = {"error": detail}
    return JSONResponse(status_code=exc.status_code, content=detail, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": exc.errors(),
            }
        },
    )


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID"],
)


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}
    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["db"] = "ok"
    except SQLAlchemyError as e:
        logger.error("health_check_db_failed", error=str(e))
        health_status["checks"]["db"] = "error"
        health_status["status"] = "unhealthy"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return health_status


# --- Routers ---
from budgeting.routes.budget_heads import router as heads_router  # noqa: E402
from budgeting.routes.budget_cycles import router as cycles_router  # noqa: E402
from budgeting.routes.budget_allocations import router as allocations_router  # noqa: E402
from budgeting.routes.budget_reviews import router as reviews_router  # noqa: E402
from budgeting.routes.budget_audit_logs import router as audit_router  # noqa: E402

app.include_router(heads_router, prefix="/api/v1/budget-heads", tags=["Budget Heads"])
app.include_router(cycles_router, prefix="/api/v1/budget-cycles", tags=["Budget Cycles"])
app.include_router(allocations_router, prefix="/api/v1/budget-allocations", tags=["Budget Allocations"])
app.include_router(reviews_router, prefix="/api/v1/budget-reviews", tags=["Budget Reviews"])
app.include_router(audit_router, prefix="/api/v1/budget-audit-logs", tags=["Budget Audit"])
