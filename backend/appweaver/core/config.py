from pydantic_settings import BaseSettings
from typing import List, Any
import json


def parse_cors_origins(v: Any) -> List[str]:
    """Parse CORS origins from string or list"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        # Try JSON parsing first
        if v.startswith('['):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        # Fall back to comma-separated
        return [origin.strip() for origin in v.split(',') if origin.strip()]
    return []


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "AppWeaver"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    API_VERSION: str = "v1"
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8000

    # ==========================================
    # Database
    # ==========================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./appweaver.db"
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 10  # PostgreSQL production only
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800  # 30 minutes

    # ==========================================
    # Redis
    # ==========================================
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_STATE_DB: int = 1  # Shared State Store lives in its own DB

    # ==========================================
    # Celery
    # ==========================================
    CELERY_BROKER_URL: str = "redis://localhost:6379/2"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/3"
    CELERY_TASK_TIME_LIMIT: int = 300  # 5 minutes per tool job
    CELERY_TASK_SOFT_TIME_LIMIT: int = 240
    CELERY_RESULT_EXPIRES: int = 3600

    # ==========================================
    # Parallel tool execution
    # ==========================================
    TOOL_COMPLETION_TIMEOUT: float = 180.0  # seconds the watcher waits for a batch
    TOOL_POLL_INTERVAL: float = 0.5  # seconds between watcher polls
    TOOL_STATE_TTL: int = 300  # TTL for every shared-state entry
    TOOL_DISPATCH_STAGGER: float = 0.5  # scheduling delay per tool index

    # Durable execution log (optimistic concurrency)
    EXECUTION_LOG_MAX_RETRIES: int = 10
    EXECUTION_LOG_RETRY_BASE_DELAY: float = 0.1
    EXECUTION_LOG_RETRY_MAX_DELAY: float = 2.0

    # ==========================================
    # Deployment
    # ==========================================
    DEPLOYMENT_LOCK_TTL: int = 600  # 10 minutes
    DEPLOYMENT_WEBHOOK_URL: str = ""  # Empty means record-only, external system picks it up
    DEPLOYMENT_REQUEST_TIMEOUT: int = 30

    # ==========================================
    # CORS (stored as comma-separated string, parsed to list)
    # ==========================================
    CORS_ORIGINS_STR: str = "http://localhost:3000,http://127.0.0.1:3000"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return parse_cors_origins(self.CORS_ORIGINS_STR)

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"

    @property
    def redis_state_url(self) -> str:
        """Redis URL pointing at the shared-state database"""
        return self.REDIS_URL.rsplit('/', 1)[0] + f"/{self.REDIS_STATE_DB}"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


# Create settings instance
settings = Settings()
