"""
CleanMod: FastAPI Application Entry Point

This module builds the FastAPI application and defines the endpoints:
- POST /api/v1/moderate: Authenticated content moderation
- /health: Health check endpoint
- /config: Non-sensitive configuration values
- /models: Registered moderation model keys
- /metrics: In-process request statistics

create_app() wires the pipeline components onto app.state so tests can
inject their own database, provider or settings. The lifespan handler:
1. Configures logging based on settings
2. Logs the configuration summary and warns about missing backend credentials
3. Creates missing tables when enabled
4. On shutdown, replays queued usage, closes backend clients and the engine
"""

from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import __version__
from app.auth.credentials import CredentialStore, extract_api_key
from app.config import Settings, configure_logging, get_settings
from app.errors import Failure, FailureKind
from app.metrics import MetricsReporter, MetricsStore, get_metrics_store
from app.pipeline.orchestrator import ModerationPipeline, PipelineSuccess
from app.providers.adapter import ModerationProvider
from app.providers.clients import BackendClients
from app.quota.ledger import QuotaLedger
from app.registry.models import ModelRegistry, ProviderName, get_model_registry
from app.schemas.moderation import (
    ComponentHealth,
    ErrorResponse,
    HealthResponse,
    MetricsResponse,
    ModerateRequest,
    ModerateResponse,
    QuotaExceededResponse,
)
from app.store.audit import AuditLogWriter
from app.store.database import Database

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler for startup/shutdown events.

    On startup:
    - Configures logging
    - Logs configuration and backend credential status
    - Creates tables if AUTO_CREATE_TABLES is enabled

    On shutdown:
    - Replays queued usage increments
    - Closes backend clients and disposes the database engine
    """
    settings: Settings = app.state.settings
    configure_logging(settings)

    logger.info("=" * 60)
    logger.info("CleanMod starting up...")
    logger.info("=" * 60)
    logger.info(f"Database: {app.state.database.dialect}")
    logger.info(f"Default model: {settings.default_model}")
    logger.info(f"Default monthly quota: {settings.default_monthly_quota}")
    logger.info(f"Billing timezone: {settings.billing_timezone}")
    logger.info(
        f"Block threshold: {settings.block_threshold if settings.block_threshold is not None else 'disabled'}"
    )
    logger.info(f"Provider timeout: {settings.provider_timeout_seconds}s")
    logger.info(f"Metrics tracking: {'enabled' if settings.track_metrics else 'disabled'}")
    logger.info(f"Debug mode: {'enabled' if settings.debug else 'disabled'}")

    clients: BackendClients = app.state.provider.clients
    for provider in ProviderName:
        if clients.is_configured(provider):
            logger.info(f"{provider.value} backend credential: configured")
        else:
            logger.warning(
                f"{provider.value} backend credential: NOT configured. "
                "Requests for its model keys will fail until it is set."
            )

    if settings.auto_create_tables:
        await app.state.database.create_all()
        logger.info("Database tables ensured")

    app.state.start_time = time.time()

    logger.info("=" * 60)
    logger.info("CleanMod ready to accept requests")

    yield  # Application runs here

    logger.info("CleanMod shutting down...")

    ledger: QuotaLedger = app.state.ledger
    if ledger.pending_count:
        await ledger.flush_pending()
        if ledger.pending_count:
            logger.error(f"{ledger.pending_count} usage increments could not be written before shutdown")

    await clients.aclose()
    await app.state.database.dispose()


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    provider: ModerationProvider | None = None,
    registry: ModelRegistry | None = None,
    metrics: MetricsStore | None = None,
) -> FastAPI:
    """
    Build the application and its pipeline.

    Args:
        settings: Settings to use. Defaults to get_settings().
        database: Database to use. Defaults to one built from DATABASE_URL.
        provider: Moderation provider. Defaults to one with lazily created backends.
        registry: Model registry. Defaults to the global registry.
        metrics: Metrics store. Defaults to the global store.

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    database = database or Database(settings.database_url, echo=settings.debug)
    registry = registry or (provider.registry if provider else get_model_registry())
    provider = provider or ModerationProvider(
        clients=BackendClients(settings), registry=registry, settings=settings
    )
    metrics = metrics or get_metrics_store()
    ledger = QuotaLedger(database, settings)

    pipeline = ModerationPipeline(
        credentials=CredentialStore(database),
        ledger=ledger,
        provider=provider,
        audit_log=AuditLogWriter(database, preview_max_length=settings.input_preview_max_length),
        registry=registry,
        settings=settings,
        metrics=metrics if settings.track_metrics else None,
    )

    app = FastAPI(
        title="CleanMod",
        description="Multi-tenant text moderation API",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.database = database
    app.state.registry = registry
    app.state.provider = provider
    app.state.ledger = ledger
    app.state.metrics = metrics
    app.state.pipeline = pipeline
    app.state.start_time = 0.0

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    _register_exception_handlers(app)

    return app


def _register_routes(app: FastAPI) -> None:
    @app.get("/")
    async def root():
        """
        Root endpoint with API information.
        """
        return {
            "name": "CleanMod",
            "description": "Multi-tenant text moderation API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
            "moderate": "/api/v1/moderate",
        }

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Health check",
        description="Check system health and component status.",
    )
    async def health_check(request: Request):
        """
        Health check endpoint for monitoring and orchestration.

        Checks:
        - Database connectivity (round-trip latency)
        - Registry availability
        - System uptime
        """
        state = request.app.state
        components = []
        overall_status = "healthy"

        start = time.perf_counter()
        try:
            await state.database.ping()
            components.append(
                ComponentHealth(
                    name="database",
                    status="healthy",
                    latency_ms=round((time.perf_counter() - start) * 1000, 2),
                    message=state.database.dialect,
                )
            )
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            components.append(
                ComponentHealth(name="database", status="unhealthy", message=str(e))
            )
            overall_status = "unhealthy"

        model_count = len(state.registry.list_models())
        if model_count:
            components.append(
                ComponentHealth(
                    name="registry",
                    status="healthy",
                    message=f"{model_count} models registered",
                )
            )
        else:
            components.append(
                ComponentHealth(name="registry", status="degraded", message="No models registered")
            )
            if overall_status == "healthy":
                overall_status = "degraded"

        uptime = time.time() - state.start_time if state.start_time > 0 else 0.0

        return HealthResponse(
            status=overall_status,
            service="cleanmod",
            version=__version__,
            components=components,
            uptime_seconds=uptime,
        )

    @app.get("/config")
    async def show_config(request: Request):
        """
        Returns non-sensitive configuration values.

        Backend credentials are SecretStr and are only reported as configured
        or not. The database URL is reduced to its dialect.
        """
        settings: Settings = request.app.state.settings
        return {
            "moderation": {
                "default_model": settings.default_model,
                "block_threshold": settings.block_threshold,
                "provider_timeout_seconds": settings.provider_timeout_seconds,
                "input_preview_max_length": settings.input_preview_max_length,
            },
            "quota": {
                "default_monthly_quota": settings.default_monthly_quota,
                "billing_timezone": settings.billing_timezone,
                "usage_retry_attempts": settings.usage_retry_attempts,
            },
            "database": {
                "dialect": request.app.state.database.dialect,
                "auto_create_tables": settings.auto_create_tables,
            },
            "server": {
                "host": settings.host,
                "port": settings.port,
                "debug": settings.debug,
            },
            "logging": {
                "level": settings.log_level,
            },
            "api_keys_configured": {
                "huggingface": settings.secret_or_none("hf_api_token") is not None,
                "openai": settings.secret_or_none("openai_api_key") is not None,
            },
        }

    @app.get("/models")
    async def list_models(request: Request):
        """
        List all registered model keys with their provider and thresholds.
        """
        registry: ModelRegistry = request.app.state.registry
        settings: Settings = request.app.state.settings

        return {
            "models": [
                {
                    "model_key": model.model_key,
                    "display_name": model.display_name,
                    "provider": model.provider.value,
                    "provider_model": model.provider_model,
                    "default_threshold": model.default_threshold,
                    "label_rules": [
                        {"substring": rule.substring, "category": rule.category}
                        for rule in model.label_rules
                    ],
                }
                for model in registry.list_models()
            ],
            "default_model": settings.default_model,
            "total_models": len(registry.list_models()),
        }

    @app.post(
        "/api/v1/moderate",
        response_model=ModerateResponse,
        responses={
            400: {"model": ErrorResponse},
            401: {"model": ErrorResponse},
            429: {"model": QuotaExceededResponse},
            500: {"model": ErrorResponse},
        },
        summary="Moderate content",
        description="Score text for toxicity and return an allow/flag/block decision.",
        openapi_extra={
            "requestBody": {
                "required": True,
                "content": {"application/json": {"schema": ModerateRequest.model_json_schema()}},
            }
        },
    )
    async def moderate(
        request: Request,
        authorization: str | None = Header(default=None),
        x_api_key: str | None = Header(default=None),
    ):
        """
        Main content moderation endpoint.

        The body is read raw and validated inside the pipeline, after the
        API key, so an unauthenticated caller always gets 401.

        Flow:
        1. Resolve the API key to a tenant
        2. Validate the body and pick the model key
        3. Check the monthly quota
        4. Moderate with the provider
        5. Write the moderation log
        6. Record usage
        """
        pipeline: ModerationPipeline = request.app.state.pipeline
        raw_secret = extract_api_key(authorization, x_api_key)
        body = await request.body()

        outcome = await pipeline.run(raw_secret, body)

        match outcome:
            case PipelineSuccess(response=response):
                return JSONResponse(content=response.model_dump(mode="json", by_alias=True))
            case Failure() as failure:
                return JSONResponse(status_code=failure.status_code, content=failure.to_body())

    @app.get(
        "/metrics",
        response_model=MetricsResponse,
        summary="Get metrics",
        description="Aggregated statistics of successful moderation requests.",
    )
    async def get_metrics(request: Request):
        """
        Return aggregated in-process metrics.

        Includes:
        - Request counts by decision and model key
        - Average provider latency and overall score
        - Usage increments waiting to be replayed
        """
        reporter = MetricsReporter(request.app.state.metrics)
        return reporter.generate_report(
            pending_usage_increments=request.app.state.ledger.pending_count
        )


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """
        Handle Pydantic validation errors as 400 with the first error's message.
        """
        errors = exc.errors()
        first_error = errors[0] if errors else {}
        field = ".".join(str(loc) for loc in first_error.get("loc", []))
        message = first_error.get("msg", "Validation failed")

        return JSONResponse(
            status_code=400,
            content={
                "error": f"{field}: {message}" if field else message,
                "code": FailureKind.BAD_REQUEST.value,
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        """
        Handle HTTP exceptions in the same error shape as pipeline failures.
        """
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail), "code": "http_error"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """
        Handle unexpected exceptions.

        Logs the full exception for debugging and returns a generic error
        response to avoid leaking implementation details.
        """
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content={"error": "An unexpected error occurred", "code": "internal_error"},
        )


app = create_app()
