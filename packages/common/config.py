"""
Application configuration using Pydantic Settings
Reads from environment variables and .env file
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    db_user: str = Field(default="finance_admin", alias="DB_USER")
    db_password: str = Field(default="", alias="DB_PASSWORD")
    db_name: str = Field(default="finance_tracker", alias="DB_NAME")
    db_host: str = Field(default="postgres", alias="DB_HOST")
    db_port: int = Field(default=5432, alias="DB_PORT")

    @property
    def database_url(self) -> str:
        """Construct database URL"""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Redis / Celery
    redis_url: str = Field(default="redis://redis:6379/0", alias="REDIS_URL")
    celery_broker_url: str = Field(default="redis://redis:6379/1", alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(default="redis://redis:6379/2", alias="CELERY_RESULT_BACKEND")

    # Application
    environment: str = Field(default="production", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Anthropic (remote transaction classifier)
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    anthropic_model: str = Field(default="claude-sonnet-4-5", alias="ANTHROPIC_MODEL")

    # AI categorization batching
    ai_batch_size: int = Field(default=40, ge=1, alias="AI_BATCH_SIZE")
    ai_max_batches: int = Field(default=50, ge=1, alias="AI_MAX_BATCHES")  # 40 * 50 = 2000 transactions max
    ai_batch_timeout_seconds: float = Field(default=45.0, gt=0, alias="AI_BATCH_TIMEOUT_SECONDS")
    ai_batch_delay_seconds: float = Field(default=5.0, ge=0, alias="AI_BATCH_DELAY_SECONDS")

    # AI categorization retries (rate limits only)
    ai_max_retries: int = Field(default=5, ge=0, alias="AI_MAX_RETRIES")
    ai_default_retry_delay_seconds: float = Field(default=45.0, ge=0, alias="AI_DEFAULT_RETRY_DELAY_SECONDS")
    ai_retry_delay_buffer_seconds: float = Field(default=5.0, ge=0, alias="AI_RETRY_DELAY_BUFFER_SECONDS")
    ai_max_retry_delay_seconds: float = Field(default=120.0, ge=0, alias="AI_MAX_RETRY_DELAY_SECONDS")

    # AI categorization job state
    ai_error_locale: str = Field(default="en", alias="AI_ERROR_LOCALE")
    ai_job_store_backend: str = Field(default="memory", alias="AI_JOB_STORE_BACKEND")
    ai_job_launcher: str = Field(default="asyncio", alias="AI_JOB_LAUNCHER")
    ai_job_ttl_seconds: int = Field(default=21600, ge=60, alias="AI_JOB_TTL_SECONDS")  # 6 hours

    # Monitoring
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")

    # Development
    debug: bool = Field(default=False, alias="DEBUG")
    skip_auth_validation: bool = Field(default=False, alias="SKIP_AUTH_VALIDATION")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment"""
        valid_envs = ["development", "staging", "production", "test"]
        if v.lower() not in valid_envs:
            raise ValueError(f"ENVIRONMENT must be one of {valid_envs}")
        return v.lower()

    @field_validator("ai_job_store_backend")
    @classmethod
    def validate_job_store_backend(cls, v):
        """Validate job state store backend"""
        valid_backends = ["memory", "redis"]
        if v.lower() not in valid_backends:
            raise ValueError(f"AI_JOB_STORE_BACKEND must be one of {valid_backends}")
        return v.lower()

    @field_validator("ai_job_launcher")
    @classmethod
    def validate_job_launcher(cls, v):
        """Validate background job launcher"""
        valid_launchers = ["asyncio", "celery"]
        if v.lower() not in valid_launchers:
            raise ValueError(f"AI_JOB_LAUNCHER must be one of {valid_launchers}")
        return v.lower()

    @model_validator(mode="after")
    def validate_launcher_store(self):
        """Celery workers run in another process, so job state must live in Redis"""
        if self.ai_job_launcher == "celery" and self.ai_job_store_backend != "redis":
            raise ValueError("AI_JOB_LAUNCHER=celery requires AI_JOB_STORE_BACKEND=redis")
        return self


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
