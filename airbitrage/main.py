import logging
import time
from contextlib import asynccontextmanager

try:
    import sentry_sdk
except ModuleNotFoundError:  # Sentry optional in local/test envs
    sentry_sdk = None
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

try:
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration
except ModuleNotFoundError:  # Sentry optional during local dev/tests
    FastApiIntegration = None
    LoggingIntegration = None

from airbitrage.api.routes import budget, debug, health, runs
from airbitrage.api.security import require_site_password
from airbitrage.config import settings
from airbitrage.services.budget.ledger import BudgetExceededError
from airbitrage.services.queue.agent_queue import AgentQueueError

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _init_sentry() -> None:
    if not (sentry_sdk and FastApiIntegration and LoggingIntegration and settings.sentry_dsn):
        return
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        integrations=[
            FastApiIntegration(auto_enabling_instrumentations=False),
            LoggingIntegration(level=logging.INFO),
        ],
        traces_sample_rate=0.1,
        environment=settings.environment,
    )
    logger.info("sentry.initialized", extra={"environment": settings.environment})


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("app.starting", extra={"version": settings.app_version, "llm_provider": settings.llm_provider})
    _init_sentry()
    settings.data_path.mkdir(parents=True, exist_ok=True)
    yield
    # Queued and running agent runs are in-process only and are dropped here.
    logger.info("app.stopping")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Scout-then-snipe arbitrage finder",
    lifespan=lifespan,
    debug=settings.debug,
)

if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "http.request",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": int((time.perf_counter() - started) * 1000),
        },
    )
    return response


@app.exception_handler(BudgetExceededError)
async def budget_exceeded(request: Request, exc: BudgetExceededError) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "detail": {
                "error": str(exc),
                "used": exc.status.used,
                "limit": exc.status.limit,
                "runsToday": exc.status.runs_today,
            }
        },
    )


@app.exception_handler(AgentQueueError)
async def agent_conflict(request: Request, exc: AgentQueueError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc), "code": exc.code})


app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(runs.router, prefix="/api", tags=["runs"])
app.include_router(budget.router, prefix="/api", tags=["budget"])
app.include_router(
    debug.router,
    prefix="/api",
    tags=["debug"],
    dependencies=[Depends(require_site_password)],
)


@app.get("/")
async def root():
    return {
        "message": f"{settings.app_name} is running",
        "version": settings.app_version,
        "agents": "/api/stream?agentType=<type>",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "airbitrage.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
