"""ArmoredMart - marketplace auth and session API."""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.errors import register_error_handlers
from app.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    from app.database import engine, init_db

    configure_logging(settings.log_level)
    # Startup: create tables for all registered models
    init_db(engine)
    logger.info(f"{settings.app_name} started")

    yield

    # Shutdown: release pooled connections
    engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Sessions, token issuance and revocation for the ArmoredMart marketplace",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "app": settings.app_name}


# Import and include routers
from app.api import auth  # noqa: E402

app.include_router(auth.router, prefix="/api")
