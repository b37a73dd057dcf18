from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Redis configuration
    REDIS_URL: str = "redis://localhost:6379/0"

    # Database configuration
    DATABASE_URL: str = "sqlite+aiosqlite:///./chatgame.db"

    # OpenAI API configuration
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_IMAGE_MODEL: str = "dall-e-2"
    IMAGE_SIZE: str = "256x256"

    # Prefix for provider-side assistant names
    PROJECT_NAME: str = "ChatGame"

    # Run status polling against the provider (seconds)
    RUN_POLL_INTERVAL_SECONDS: float = 1.0
    RUN_TIMEOUT_SECONDS: float = 120.0

    # Image read path polling
    IMAGE_POLL_INTERVAL_SECONDS: float = 1.0
    IMAGE_POLL_MAX_ATTEMPTS: int = 20

    # Streaming gateway
    STREAM_TTL_SECONDS: int = 300
    STREAM_READ_BLOCK_MS: int = 15000
    STREAM_PRUNE_INTERVAL_MINUTES: int = 1
    SCHEDULER_TIMEZONE: str = "UTC"

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'

settings = Settings()
