import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.router import api_router
from app.core.config import build_gateway_config, settings, validate_settings_for_production
from app.core.logging import setup_logging
from app.core.metrics import PrometheusMiddleware, metrics_response
from app.core.sentry import init_sentry
from app.gateway.errors import GatewayError
from app.gateway.gateway import ChatGateway
from app.gateway.translator import error_envelope

# Configure logging before anything else
setup_logging()
init_sentry()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    app.state.gateway = ChatGateway(build_gateway_config(settings))
    logger.info(
        "Starting LLM Playground Gateway (env=%s, retry attempts=%d)",
        settings.app_env,
        settings.retry_max_attempts,
    )

    yield

    logger.info("LLM Playground Gateway shut down")


app = FastAPI(
    title="LLM Playground Gateway",
    description="Stateless forwarding gateway for OpenAI, Groq, Fireworks and Perplexity",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


@app.exception_handler(GatewayError)
async def _gateway_error_handler(request: Request, exc: GatewayError):
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, "%s on %s %s: %s", exc.kind.value, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_envelope(exc))


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Keeps the Allow header Starlette attaches to 405s
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


# Log unhandled exceptions and answer with the Internal envelope
@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content=error_envelope(GatewayError.internal(exc)))


# Metrics
app.add_middleware(PrometheusMiddleware)

# CORS: allowed origins come from settings (comma-separated)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=86400,
)

# API routes
app.include_router(api_router)


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()


@app.get("/api/health")
async def health(request: Request):
    gateway: ChatGateway = request.app.state.gateway
    return {
        "status": "ok",
        "providers": {p.value: bool(gateway.config.api_key(p)) for p in gateway.config.providers},
    }


def run() -> None:
    """Serve the app with uvicorn on APP_HOST:APP_PORT."""
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_debug,
        log_config=None,  # keep the handlers installed by setup_logging
    )


if __name__ == "__main__":
    run()
