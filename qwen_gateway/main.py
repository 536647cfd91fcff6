from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .errors import register_exception_handlers
from .gateway import ChatGateway
from .llm_service import UpstreamClient, build_upstream_client
from .logging_conf import setup_logging
from .middlewares import FixedWindowRateLimiter, log_requests, rate_limit
from .schemas import ChatHistoryRequest, ChatRequest, ChatResponse, ErrorResponse, HealthResponse
from .utils import parse_json_body

VERSION = "1.0.0"

logger = structlog.get_logger()

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def json_body(model) -> dict:
    """OpenAPI request body for routes that decode the raw body themselves."""
    return {
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": model.model_json_schema()}},
        }
    }


def get_gateway(request: Request) -> ChatGateway:
    return request.app.state.gateway


# ---------------------------------------------------
# Routes
# ---------------------------------------------------
@router.get("/")
async def root(request: Request):
    """Root metadata endpoint."""
    return {
        "service": request.app.title,
        "version": VERSION,
        "status": "running",
        "endpoints": {
            "health": "/health (GET)",
            "chat": "/api/chat (POST)",
            "chat_history": "/api/chat/history (POST)",
        },
    }


@router.get("/health", response_model=HealthResponse)
async def health(gateway: ChatGateway = Depends(get_gateway)):
    """Liveness check; never calls the upstream model."""
    return gateway.health()


@router.post(
    "/api/chat",
    response_model=ChatResponse,
    responses=ERROR_RESPONSES,
    openapi_extra=json_body(ChatRequest),
)
async def chat(request: Request, gateway: ChatGateway = Depends(get_gateway)):
    """Single message, optionally with an image URL."""
    body = parse_json_body(await request.body())
    return await gateway.chat(body)


@router.post(
    "/api/chat/history",
    response_model=ChatResponse,
    responses=ERROR_RESPONSES,
    openapi_extra=json_body(ChatHistoryRequest),
)
async def chat_history(request: Request, gateway: ChatGateway = Depends(get_gateway)):
    """Whole conversation, forwarded as sent."""
    body = parse_json_body(await request.body())
    return await gateway.chat_history(body)


# ---------------------------------------------------
# App factory
# ---------------------------------------------------
def create_app(settings: Settings | None = None, upstream: UpstreamClient | None = None) -> FastAPI:
    """Build the gateway app. `upstream` replaces the configured upstream client."""
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)

    if upstream is None:
        if not settings.QWEN_API_KEY:
            logger.warning("upstream.credentials_missing", backend=settings.UPSTREAM_BACKEND)
        upstream = build_upstream_client(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "startup.complete",
            env=settings.APP_ENV,
            backend=settings.UPSTREAM_BACKEND,
            model=settings.QWEN_MODEL,
        )
        yield
        await upstream.aclose()
        logger.info("shutdown.complete")

    app = FastAPI(title=settings.APP_NAME, version=VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.gateway = ChatGateway(upstream)

    register_exception_handlers(app)
    app.include_router(router)

    # Added last runs first: CORS -> request logging -> rate limit -> routes
    if settings.RATE_LIMIT_MAX > 0:
        limiter = FixedWindowRateLimiter(settings.RATE_LIMIT_MAX, settings.RATE_LIMIT_WINDOW_SECONDS)
        app.state.rate_limiter = limiter
        app.middleware("http")(rate_limit(limiter))
    app.middleware("http")(log_requests)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


def run() -> None:
    settings = get_settings()
    uvicorn.run("qwen_gateway.main:create_app", factory=True, host=settings.HOST, port=settings.PORT)
