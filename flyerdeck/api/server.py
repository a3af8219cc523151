import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import sentry_sdk
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from flyerdeck import __version__
from flyerdeck.agents.config import HEARTBEAT_INTERVAL_SECONDS
from flyerdeck.agents.generation.slide_generator import SlideGenerator
from flyerdeck.api.generate_stream import GenerationSession, GeneratorFactory
from flyerdeck.api.middleware import RequestLoggingMiddleware
from flyerdeck.api.session import SessionResolver
from flyerdeck.config.logging_config import apply_logging_config
from flyerdeck.models.requests import GenerationInput
from flyerdeck.services.providers import ProviderContext

load_dotenv(override=True)

logger = logging.getLogger(__name__)


def init_sentry() -> bool:
    """Initialise Sentry when SENTRY_DSN is configured."""
    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        return False

    sentry_logging = LoggingIntegration(
        level=logging.INFO,        # Capture info and above as breadcrumbs
        event_level=logging.ERROR  # Send errors as events
    )
    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FastApiIntegration(transaction_style='endpoint'),
            sentry_logging,
        ],
        traces_sample_rate=0.1,
        environment=os.getenv("ENV", "development"),
        release=os.getenv("RENDER_GIT_COMMIT", "unknown"),
        send_default_pii=False,
        before_send=lambda event, hint: event if event.get('level') != 'debug' else None
    )
    return True


def _allowed_origins() -> list:
    environment = (os.getenv("ENVIRONMENT") or os.getenv("ENV") or "development").lower()
    origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
    if environment != "production":
        origins.extend([
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ])
    return origins


def create_app(
    providers: Optional[ProviderContext] = None,
    sessions: Optional[SessionResolver] = None,
    generator_factory: Optional[GeneratorFactory] = None,
    heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
) -> FastAPI:
    """
    Build the API app.

    Provider clients are created on first use unless ``providers`` or a
    ``generator_factory`` is given, and closed on shutdown when the app
    created them.
    """
    logging_config = apply_logging_config()
    init_sentry()

    state = {"providers": providers, "owns_providers": False}

    def get_providers() -> ProviderContext:
        if state["providers"] is None:
            state["providers"] = ProviderContext.from_env()
            state["owns_providers"] = True
        return state["providers"]

    def default_generator_factory(validated: GenerationInput) -> SlideGenerator:
        return SlideGenerator.from_context(
            get_providers(),
            parallel=validated.parallel,
            model_type=validated.modelType,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"flyerdeck {__version__} starting ({logging_config['environment']})")
        yield
        if state["owns_providers"] and state["providers"] is not None:
            await state["providers"].aclose()
        logger.info("flyerdeck shut down")

    app = FastAPI(title="Flyerdeck Generation API", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
        max_age=3600,
    )
    if logging_config.get("log_requests"):
        app.add_middleware(RequestLoggingMiddleware)

    resolver = sessions or SessionResolver()
    factory = generator_factory or default_generator_factory

    @app.post("/generate")
    async def generate(request: Request):
        session = GenerationSession(
            request,
            resolver,
            factory,
            heartbeat_interval=heartbeat_interval,
        )
        return await session.respond()

    @app.get("/api/health")
    async def health_check():
        return {"status": "healthy", "timestamp": datetime.now().isoformat(), "version": __version__}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "flyerdeck.api.server:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level="info",
    )
