"""FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from storygate.core.config import settings
from storygate.core.errors import GatewayError, QuotaExceeded, ValidationError
from storygate.core.quota import QuotaPolicy
from storygate.database import init_db
from storygate.api.generate import router as generate_router
from storygate.api.quota import router as quota_router
from storygate.api.stories import router as stories_router
from storygate.services.accounts import build_account_store
from storygate.services.gemini import GeminiBackend
from storygate.services.orchestrator import GenerationOrchestrator
from storygate.services.providers import GenerationProviderAdapter
from storygate.services.validation import ResultValidator

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug
)
app.state.settings = settings

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=False,
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


def build_orchestrator() -> GenerationOrchestrator:
    """Construct the store, policy, upstream client and adapter once per process."""
    store = build_account_store(settings)
    adapter = GenerationProviderAdapter.from_settings(GeminiBackend(settings), settings)
    return GenerationOrchestrator(
        store=store,
        policy=QuotaPolicy.from_settings(settings),
        adapter=adapter,
        validator=ResultValidator.from_settings(settings),
    )


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    logger.info("Starting up storygate generation gateway...")
    logger.info(f"APP_ENV={settings.app_env} (is_prod={settings.is_prod})")

    # Prod: require credentials (fail fast)
    if settings.is_prod and not settings.gemini_api_key:
        raise RuntimeError("GEMINI_API_KEY is required when APP_ENV=prod. Set it in .env or environment.")
    if settings.is_prod and not settings.auth_jwt_secret:
        raise RuntimeError("AUTH_JWT_SECRET is required when APP_ENV=prod.")
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY not set. Generation requests will fail with 500.")
    if not settings.auth_jwt_secret:
        logger.warning("AUTH_JWT_SECRET not set. Every request will be rejected with 401.")

    logger.info(f"Models: text={settings.text_model} image={settings.image_model} tts={settings.tts_model}")
    logger.info(f"Plan limits: {settings.plan_limits} (default plan: {settings.default_plan})")
    logger.info(
        f"Timeouts: text={settings.text_timeout_seconds}s image={settings.image_timeout_seconds}s "
        f"audio={settings.audio_timeout_seconds}s"
    )

    # Saved stories always live in SQL; accounts too unless another backend is chosen
    try:
        init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")

    app.state.orchestrator = build_orchestrator()
    logger.info(f"Account store: {settings.account_store_backend}")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Shutting down...")
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is not None:
        await orchestrator.store.close()


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "service": settings.app_name
    }


# Include API routers
app.include_router(generate_router, tags=["Generation"])
app.include_router(quota_router, tags=["Quota"])
app.include_router(stories_router, tags=["Stories"])


@app.exception_handler(GatewayError)
async def gateway_exception_handler(request, exc: GatewayError):
    """Every known failure becomes {"error", "code", ...details} with its status."""
    headers = None
    if isinstance(exc, QuotaExceeded) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request, exc: RequestValidationError):
    fields = sorted({".".join(str(p) for p in err["loc"] if p != "body") for err in exc.errors()})
    error = ValidationError("Invalid request body", details={"fields": fields})
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "code": f"http_{exc.status_code}"},
        headers=getattr(exc, "headers", None),
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler - never expose stack traces."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "An internal error occurred. Please try again later.", "code": "internal_error"}
    )
