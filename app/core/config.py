from typing import Dict, List, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: Optional[str] = None

    # Public base URL of this API (used for Zendesk webhook endpoint + OAuth redirect)
    ROOT_URL: Optional[str] = None

    # Database (PostgreSQL - local or deployed)
    DATABASE_URL: Optional[str] = None

    # Credential vault key: base64 encoded 32 raw bytes (AES-256-GCM)
    ENCRYPTION_KEY: Optional[str] = None

    # CORS
    ALLOWED_ORIGINS: List[str] = []

    # Slack Integration
    SLACK_SIGNING_SECRET: Optional[str] = None
    SLACK_CLIENT_ID: Optional[str] = None
    SLACK_CLIENT_SECRET: Optional[str] = None
    SLACK_API_BASE_URL: str = "https://slack.com/api"
    SLACK_OAUTH_AUTHORIZE_URL: str = "https://slack.com/oauth/v2/authorize"
    SLACK_OAUTH_SCOPES: str = (
        "team:read,channels:read,groups:read,channels:history,groups:history,"
        "chat:write,chat:write.customize,users:read.email,users:read,"
        "users.profile:read,files:read,files:write"
    )
    SLACK_REQUEST_MAX_AGE_SECONDS: int = (
        300  # Reject signed requests with timestamps older than this (replay window)
    )

    # OAuth state validity window
    OAUTH_STATE_TTL_SECONDS: int = 600

    # Conversation mapping
    SAME_SENDER_WINDOW_MINUTES: int = (
        30  # Root messages from one author within this window merge into one ticket
    )
    ZENDESK_INTEGRATION_NAMESPACE: str = (
        "zensync"  # Prefix for Zendesk external ids, tags and self-loop detection
    )

    # Log Level
    LOG_LEVEL: (
        str  # Required: Must be set in environment (e.g., INFO, DEBUG, WARNING, ERROR)
    )

    # AWS SQS
    AWS_REGION: Optional[str] = None
    AWS_ENDPOINT_URL: Optional[str] = None
    SQS_CHAT_MESSAGE_EVENTS_QUEUE_URL: Optional[str] = None
    SQS_FILE_UPLOAD_JOBS_QUEUE_URL: Optional[str] = None
    SQS_CONNECTION_LIFECYCLE_EVENTS_QUEUE_URL: Optional[str] = None
    SQS_BILLING_EVENTS_QUEUE_URL: Optional[str] = None
    SQS_DEAD_LETTER_QUEUE_URL: Optional[str] = None

    # Queue retry policy
    QUEUE_MAX_RETRIES: int = 3  # Redeliveries after the first attempt
    QUEUE_RETRY_DELAY_SECONDS: int = 5  # Visibility timeout before redelivery
    QUEUE_MAX_RETRIES_OVERRIDES: Dict[str, int] = {
        "file-upload-jobs": 4,
    }

    # API Configuration
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "Zensync-API"
    VERSION: str = "1.0.0"

    # HTTP Settings
    HTTP_REQUEST_TIMEOUT_SECONDS: float = 30.0  # Default timeout for HTTP requests

    # External API Retry Configuration (Slack OAuth exchange)
    # Uses tenacity library for retry logic with exponential backoff
    EXTERNAL_API_RETRY_ATTEMPTS: int = (
        4  # Total attempts (3 retries + 1 initial = 4 total)
    )
    EXTERNAL_API_RETRY_MIN_WAIT: float = (
        0.5  # Minimum wait time between retries (seconds)
    )
    EXTERNAL_API_RETRY_MAX_WAIT: float = (
        2.0  # Maximum wait time between retries (seconds)
    )
    EXTERNAL_API_RETRY_MULTIPLIER: float = 1.0  # Exponential backoff multiplier

    # Internal endpoints (dashboard -> core)
    INTERNAL_API_TOKEN: Optional[str] = None

    # Sentry Configuration
    SENTRY_DSN: Optional[str] = None  # Sentry DSN for error tracking
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1

    # Logging Configuration
    LOGGING_FRAME_DEPTH: int = (
        6  # Frame depth for finding logging call origin in stack trace
    )

    # Stripe Configuration
    STRIPE_API_KEY: Optional[str] = None  # sk_test_... or sk_live_...
    STRIPE_WEBHOOK_SECRET: Optional[str] = None  # whsec_... for webhook verification
    STRIPE_DEFAULT_PRICE_ID: Optional[str] = None  # price_... for the free plan
    STRIPE_PRODUCT_CHANNEL_LIMITS: Dict[str, int] = {
        "prod_Q5BHjL3CLeZGhd": 1,  # Free
        "prod_Q5BHZhwI2uNlsF": 3,  # Starter
        "prod_Q5BHB0jQWtbY7z": 5000,  # Unlimited
        "prod_Q5BHUnXfFOz93J": 5001,  # Enterprise
    }
    SUBSCRIPTION_EXPIRATION_BUFFER_HOURS: int = 24

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    # --------- Properties ---------
    @property
    def is_local(self) -> bool:
        """
        Check if running in local development environment.

        Returns True only for local development (local or local_dev).
        Any other environment (dev, staging, prod) returns False.
        """
        if not self.ENVIRONMENT:
            return False
        env = self.ENVIRONMENT.lower()
        return env in ["local", "local_dev"]


settings = Settings()
