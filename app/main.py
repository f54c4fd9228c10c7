from contextlib import asynccontextmanager
from dotenv import load_dotenv
import logging
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api.routers.routers import api_router
from app.core.config import settings
from app.core.database import init_database
from app.core.logging_config import configure_logging
from app.core.rate_limit import limiter
from app.core.sentry import init_sentry
from app.middleware import RequestIDMiddleware
from app.services.sqs.client import sqs_client
from app.utils.token_processor import init_token_processor


# Load environment variables
load_dotenv()

# Configure logging with request_id and job_id support using stdlib logging
configure_logging()

# Get logger for this module
logger = logging.getLogger(__name__)

# Initialize Sentry for error tracking
init_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown.

    On startup, initializes the database and the credential vault, then yields
    control for the application to run. On shutdown, closes the SQS client.
    Queue consumers run in the separate worker process (worker.py).
    """
    logger.info("Starting Zensync API application...")

    try:
        # Initialize database
        await init_database()
        logger.info("Database initialized")

        # Credential vault: fails fast on a missing or malformed ENCRYPTION_KEY
        init_token_processor()
        logger.info("Token processor initialized")

        logger.info("All services started successfully")
        yield

    except Exception:
        logger.exception("Failed to start services")
        raise
    finally:
        logger.info("Shutting down Zensync API application...")

        try:
            await sqs_client.close()
            logger.info("SQS client closed")
        except Exception:
            logger.exception("Error during shutdown")


# Create FastAPI application
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
    openapi_url="/openapi.json" if settings.is_local else None,
)

# Add rate limiter state
app.state.limiter = limiter

# Add rate limit exceeded handler
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add Request ID middleware (must be added first to ensure request_id is available)
app.add_middleware(RequestIDMiddleware)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)

# Include all API routes
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/health")
async def health_check():
    try:
        return {
            "fastAPI server": {"status": "healthy"},
        }
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Health check failed: {str(e)}")
