# consultor/main.py
"""
FastAPI application for the guided consultation interview.

Every consultation step is one POST against a session; each response
carries the full session snapshot so that a client can render the
current view without keeping state of its own.
"""

from fastapi import BackgroundTasks, FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.security import APIKeyHeader
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from pydantic import BaseModel, Field
from typing import List, Dict, Any, Optional
from contextlib import asynccontextmanager
from datetime import datetime
import os
import secrets

from consultor.core.config import get_settings, validate_required_settings
from consultor.core.definition_loader import load_consultation_definition
from consultor.core.exceptions import SessionError, ValidationError
from consultor.core.logging_config import setup_logging
from consultor.core.orchestrator import ConsultationOrchestrator
from consultor.core.rate_limit_config import get_real_ip, get_rate_limit_message, RATE_LIMIT_TIERS
from consultor.models.session_state import SessionStore

# Setup logging
logger = setup_logging()

# Initialized in lifespan
orchestrator: Optional[ConsultationOrchestrator] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan event handler for startup/shutdown"""
    global orchestrator

    logger.info("=" * 60)
    logger.info("Consultor API starting...")
    logger.info("=" * 60)

    settings = get_settings()

    # Warn but don't fail: services are created on first use
    if not validate_required_settings(settings):
        logger.warning("Some environment variables are missing - services may fail on first use")

    try:
        config = load_consultation_definition(settings.CONSULTATION_DEFINITION_PATH)
        orchestrator = ConsultationOrchestrator(
            config,
            session_store=SessionStore(max_idle_seconds=settings.SESSION_TTL_SECONDS),
            agent_name=settings.AGENT_NAME
        )

        logger.info("Configuration:")
        logger.info(f"  - Definition: {settings.CONSULTATION_DEFINITION_PATH}")
        logger.info(f"  - Blocks: {len(config.blocks)}, questions: {config.total_questions}")
        logger.info(f"  - Diagnosis parts: {len(config.diagnosis_parts)}")
        logger.info(f"  - Consultant: {orchestrator.agent_name}")
        logger.info(f"  - Session idle timeout: {settings.SESSION_TTL_SECONDS}s")
        logger.info("  - Services: Will initialize on first use")
        logger.info("Consultor API ready")
    except Exception as e:
        logger.error(f"Failed to initialize orchestrator: {e}")
        logger.error("Startup failed - check the consultation definition and environment variables")
        raise

    yield

    logger.info("Consultor API shutting down...")
    if orchestrator is not None:
        await orchestrator.shutdown()


app = FastAPI(
    title="Consultor API",
    description="Guided multi-stage consultation interview",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None
)

# =============================================================================
# API KEY AUTHENTICATION
# =============================================================================

API_KEY_NAME = "X-API-Key"
api_key_header = APIKeyHeader(name=API_KEY_NAME, auto_error=False)


def get_api_key():
    """Get API key from environment or generate one for development"""
    api_key = os.getenv("CONSULTOR_API_KEY")
    if not api_key:
        api_key = secrets.token_urlsafe(32)
        logger.warning("No CONSULTOR_API_KEY set. Generated temporary key.")
        logger.warning("Set CONSULTOR_API_KEY environment variable for production!")
        logger.warning(f"Temporary key (first 8 chars): {api_key[:8]}...")
    else:
        logger.info("API Key configured from environment")
    return api_key


VALID_API_KEY = get_api_key()


def get_safe_error_message(error: Exception, context: str = "") -> str:
    """Return a safe error message that doesn't expose internal details"""
    logger.error(f"Error in {context}: {type(error).__name__}: {str(error)}")

    if isinstance(error, HTTPException):
        return error.detail

    error_messages = {
        "ConnectionError": "Erro de conexão. Tente novamente mais tarde.",
        "TimeoutError": "A requisição demorou demais. Tente novamente.",
        "ValidationError": "A entrada é inválida. Verifique os dados enviados.",
    }

    error_type = type(error).__name__
    return error_messages.get(error_type, "Ocorreu um erro. Tente novamente mais tarde.")


async def verify_api_key(api_key: Optional[str] = Depends(api_key_header)):
    """Verify API key for protected endpoints"""
    if api_key is None:
        logger.warning("Request without API key")
        raise HTTPException(
            status_code=401,
            detail="Missing API Key. Include 'X-API-Key' header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    if api_key != VALID_API_KEY:
        logger.warning("Invalid API key attempt detected")
        raise HTTPException(
            status_code=401,
            detail="Invalid API Key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return api_key

# =============================================================================
# RATE LIMITING
# =============================================================================

limiter = Limiter(key_func=get_real_ip)


def custom_rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Custom rate limit response with helpful message"""
    response = PlainTextResponse(
        content=get_rate_limit_message("default"),
        status_code=429,
    )
    response.headers["Retry-After"] = "60"
    response.headers["X-RateLimit-Limit"] = str(getattr(exc, "limit", "N/A"))
    return response


app.add_exception_handler(RateLimitExceeded, custom_rate_limit_handler)

# Required by slowapi
app.state.limiter = limiter

RATE_LIMITS = RATE_LIMIT_TIERS["default"]

# =============================================================================
# MIDDLEWARE
# =============================================================================


@app.middleware("http")
async def log_requests(request, call_next):
    """Log all incoming requests except repeated health checks"""
    path = request.url.path

    if path == "/health":
        if not hasattr(app.state, "health_logged"):
            logger.info(f"Health check endpoint hit: {path}")
            app.state.health_logged = True
    else:
        logger.info(f"Request: {request.method} {path}")

    return await call_next(request)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses"""
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"

    if "Server" in response.headers:
        del response.headers["Server"]

    return response


# CORS: explicit origins from the environment, localhost only outside production
is_production = os.getenv("ENV") == "production"
production_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
development_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
]
allowed_origins = production_origins + ([] if is_production else development_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# =============================================================================
# API MODELS
# =============================================================================


class StartConsultationRequest(BaseModel):
    user_id: Optional[str] = None


class InitialFormRequest(BaseModel):
    form_data: Dict[str, Any] = Field(default_factory=dict)


class AnswerRequest(BaseModel):
    answer: str


def get_consultation_orchestrator() -> ConsultationOrchestrator:
    if orchestrator is None:
        logger.error("Orchestrator not initialized!")
        raise HTTPException(status_code=503, detail="Service not ready - orchestrator not initialized")
    return orchestrator


def _session_response(orch: ConsultationOrchestrator, session_id: str) -> Dict[str, Any]:
    """Session snapshot; queued notifications are delivered exactly once"""
    info = orch.get_session_info(session_id)
    orch.pop_notifications(session_id)
    return info


def _to_http_error(error: Exception, context: str) -> HTTPException:
    if isinstance(error, HTTPException):
        return error
    if isinstance(error, SessionError):
        return HTTPException(status_code=404, detail="Consultation not found")
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=error.message)
    logger.error(f"Error in {context}: {error}", exc_info=True)
    return HTTPException(status_code=500, detail=get_safe_error_message(error, context))

# =============================================================================
# PUBLIC ENDPOINTS
# =============================================================================


@app.get("/", status_code=200)
def read_root():
    """Health check endpoint - responds immediately"""
    return {"status": "ok", "version": "1.0.0", "service": "consultor"}


@app.get("/health", status_code=200)
def health():
    """Alternative health check endpoint"""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}

# =============================================================================
# CONSULTATION ENDPOINTS
# =============================================================================


@app.get("/config", dependencies=[Depends(verify_api_key)])
@limiter.limit(RATE_LIMITS["read"])
async def get_consultation_config(
    request: Request,
    orch: ConsultationOrchestrator = Depends(get_consultation_orchestrator)
):
    """
    Interview definition needed for rendering: form fields, blocks and
    their questions, diagnosis headings and consultant identity.
    """
    config = orch.config
    return {
        "identity": {"name": config.identity.name, "opening": config.identity.opening},
        "initial_form": config.initial_form.model_dump(mode="json"),
        "blocks": [
            {
                "id": block.id,
                "theme": block.theme,
                "question_count": block.question_count,
                "questions": [{"id": q.id, "text": q.text} for q in block.questions],
            }
            for block in config.blocks
        ],
        "diagnosis": {
            "id": config.diagnosis_id,
            "title": config.diagnosis_title,
            "description": config.diagnosis_description,
            "parts": [{"part_id": d.part_id, "title": d.title} for d in config.diagnosis_parts],
        },
        "closing_message": config.closing_message,
    }


@app.post("/consultations", dependencies=[Depends(verify_api_key)])
@limiter.limit(RATE_LIMITS["start"])
async def start_consultation(
    request: Request,
    req: Optional[StartConsultationRequest] = None,
    orch: ConsultationOrchestrator = Depends(get_consultation_orchestrator)
):
    """Start a new consultation in the welcome view"""
    try:
        session = await orch.start_consultation(user_id=req.user_id if req else None)
        return _session_response(orch, session.session_id)
    except Exception as e:
        raise _to_http_error(e, "start_consultation")


@app.get("/consultations/{session_id}", dependencies=[Depends(verify_api_key)])
@limiter.limit(RATE_LIMITS["read"])
async def get_consultation(
    request: Request,
    session_id: str,
    orch: ConsultationOrchestrator = Depends(get_consultation_orchestrator)
):
    """Current snapshot without consuming notifications"""
    try:
        return orch.get_session_info(session_id)
    except Exception as e:
        raise _to_http_error(e, "get_consultation")


@app.post("/consultations/{session_id}/initial-form/open", dependencies=[Depends(verify_api_key)])
@limiter.limit(RATE_LIMITS["step"])
async def open_initial_form(
    request: Request,
    session_id: str,
    orch: ConsultationOrchestrator = Depends(get_consultation_orchestrator)
):
    try:
        await orch.open_initial_form(session_id)
        return _session_response(orch, session_id)
    except Exception as e:
        raise _to_http_error(e, "open_initial_form")


@app.post("/consultations/{session_id}/initial-form", dependencies=[Depends(verify_api_key)])
@limiter.limit(RATE_LIMITS["step"])
async def submit_initial_form(
    request: Request,
    session_id: str,
    req: InitialFormRequest,
    orch: ConsultationOrchestrator = Depends(get_consultation_orchestrator)
):
    try:
        await orch.submit_initial_form(session_id, req.form_data)
        return _session_response(orch, session_id)
    except Exception as e:
        raise _to_http_error(e, "submit_initial_form")


@app.post("/consultations/{session_id}/answers", dependencies=[Depends(verify_api_key)])
@limiter.limit(RATE_LIMITS["step"])
async def submit_answer(
    request: Request,
    session_id: str,
    req: AnswerRequest,
    orch: ConsultationOrchestrator = Depends(get_consultation_orchestrator)
):
    """
    Answer the current question. The response arrives after the feedback
    (or its fallback) has been recorded.
    """
    try:
        await orch.submit_answer(session_id, req.answer)
        return _session_response(orch, session_id)
    except Exception as e:
        raise _to_http_error(e, "submit_answer")


@app.post("/consultations/{session_id}/proceed", dependencies=[Depends(verify_api_key)])
@limiter.limit(RATE_LIMITS["step"])
async def proceed(
    request: Request,
    session_id: str,
    background_tasks: BackgroundTasks,
    orch: ConsultationOrchestrator = Depends(get_consultation_orchestrator)
):
    try:
        await orch.proceed(session_id)
        # A transcript write started here finishes after the response is sent
        background_tasks.add_task(orch.wait_for_pending_writes)
        return _session_response(orch, session_id)
    except Exception as e:
        raise _to_http_error(e, "proceed")


@app.post("/consultations/{session_id}/restart", dependencies=[Depends(verify_api_key)])
@limiter.limit(RATE_LIMITS["step"])
async def restart_consultation(
    request: Request,
    session_id: str,
    orch: ConsultationOrchestrator = Depends(get_consultation_orchestrator)
):
    try:
        await orch.restart(session_id)
        return _session_response(orch, session_id)
    except Exception as e:
        raise _to_http_error(e, "restart")


@app.get("/users/{user_id}/consultations", dependencies=[Depends(verify_api_key)])
@limiter.limit(RATE_LIMITS["read"])
async def list_user_consultations(
    request: Request,
    user_id: str,
    orch: ConsultationOrchestrator = Depends(get_consultation_orchestrator)
) -> List[Dict[str, Any]]:
    """Completed consultations of a user, newest first"""
    try:
        history = await orch.get_history(user_id)
        return [item.model_dump(mode="json") for item in history]
    except Exception as e:
        raise _to_http_error(e, "list_user_consultations")

# =============================================================================
# DEBUG ENDPOINTS
# =============================================================================


@app.get("/debug/health", dependencies=[Depends(verify_api_key)])
async def debug_health_check(orch: ConsultationOrchestrator = Depends(get_consultation_orchestrator)):
    """Detailed health status of the orchestrator and its collaborators"""
    try:
        return await orch.health_check()
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {"overall": "unhealthy", "error": str(e)}


@app.get("/debug/flow", dependencies=[Depends(verify_api_key)])
async def get_flow_debug_info(orch: ConsultationOrchestrator = Depends(get_consultation_orchestrator)):
    """Transition table and reachability check of the reducer"""
    try:
        return orch.get_flow_debug_info()
    except Exception as e:
        raise _to_http_error(e, "debug_flow")


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    logger.info(f"Starting Consultor API on port {port}...")

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=port,
        log_level="info"
    )
