from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    database_url: str = Field(default="sqlite:///./clipper.db", alias="DATABASE_URL")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    rq_queue_name: str = Field(default="payouts", alias="RQ_QUEUE_NAME")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_structured: bool = Field(default=False, alias="LOG_STRUCTURED")

    scheduler_poll_seconds: int = Field(default=300, alias="SCHEDULER_POLL_SECONDS")
    pipeline_lock_ttl_seconds: int = Field(default=1800, alias="PIPELINE_LOCK_TTL_SECONDS")

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
