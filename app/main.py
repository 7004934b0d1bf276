"""Main FastAPI application for the Agent Orchestration Service."""

import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.dependencies import build_runtime
from app.core.exceptions import AgentError, BaseAPIException, InfrastructureError, InternalServerError
from app.core.logging import get_logger, get_correlation_id, setup_logging
from app.core.middleware import CorrelationIDMiddleware
from app.database.client import create_supabase_client
from app.services.agent_service import register_agents
from app.api.agents import router as agents_router
from app.api.health import router as health_router
from app.api.monitoring import router as monitoring_router

# Get settings
settings = get_settings()

# Initialize logging
setup_logging(settings.log_sample_rate)
logger = get_logger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Agent Orchestration Service",
    description="Schedules and runs the collections system's maintenance agents",
    version=settings.service_version,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(CorrelationIDMiddleware, slow_request_threshold_ms=1000.0)

# CORS middleware
if settings.enable_cors:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Include API routers; monitoring first so /agents/monitoring is not read as an agent id
app.include_router(health_router, prefix=settings.api_prefix, tags=["health"])
app.include_router(monitoring_router, prefix=settings.api_prefix)
app.include_router(agents_router, prefix=settings.api_prefix)


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    """Render API exceptions in the service's JSON error envelope."""
    exc.correlation_id = get_correlation_id() or exc.correlation_id
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


@app.exception_handler(AgentError)
async def agent_exception_handler(request: Request, exc: AgentError):
    """Domain errors no route translated become a 500 in the error envelope."""
    logger.error(
        "Unhandled agent error",
        path=request.url.path,
        error=exc.message,
        error_type=type(exc).__name__,
        agent_id=exc.agent_id,
    )
    return await api_exception_handler(request, InternalServerError())


@app.on_event("startup")
async def startup_event():
    """Wire the agent runtime, register the default agents and start the scheduler."""
    logger.info("Starting Agent Orchestration Service", version=settings.service_version)
    app.state.start_time = time.time()

    client = create_supabase_client(settings)
    runtime = build_runtime(settings, client)
    app.state.runtime = runtime

    if settings.register_default_agents:
        await register_agents(runtime.registry, reset_state=settings.reset_on_register)

    if settings.scheduler_enabled:
        try:
            await runtime.scheduler.initialize()
        except InfrastructureError as e:
            logger.error("Failed to initialize agent scheduler", error=e.message)
            # Continue startup; the scheduler can be initialized over the API

    logger.info(
        "Service startup complete",
        development_mode=client is None,
        handler_types=runtime.handlers.agent_types,
        scheduler_running=runtime.scheduler.running,
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the scheduler. Runs already in progress are not interrupted."""
    logger.info("Shutting down Agent Orchestration Service")

    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        await runtime.scheduler.shutdown()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
