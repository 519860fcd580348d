from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    DB_ECHO: bool = False
    LOG_LEVEL: str = "INFO"

    # Read-only SQL sandbox, fixed for the lifetime of the process
    SQL_MAX_ROWS: int = Field(default=100, gt=0)
    SQL_TIMEOUT_MS: int = Field(default=10000, gt=0)
    SQL_AUDIT_CAPACITY: int = Field(default=1000, gt=0)

    # OpenAI-compatible chat completions endpoint for the text-to-SQL assistant
    LLM_BASE_URL: str = "https://api.openai.com/v1"
    LLM_API_KEY: Optional[str] = None
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_SECONDS: float = 30.0

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Create a single instance of the settings to use everywhere
settings = Settings()
