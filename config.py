from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # model service (any openai-compatible chat completions endpoint)
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str | None = None
    MODEL_NAME: str = "gpt-4o-mini"
    MODEL_TIMEOUT_SECONDS: float = 60.0

    # user backend
    BACKEND_TIMEOUT_SECONDS: float = 15.0
    SQL_FUNCTION_NAME: str = "exec_sql"
    # empty list accepts any http(s) host
    ALLOWED_BACKEND_HOSTS: list[str] = [".supabase.co", ".supabase.in"]

    # orchestration
    MAX_TOOL_ITERATIONS: int = Field(15, ge=1)
    MAX_PARALLEL_TOOL_CALLS: int = Field(4, ge=1)
    DEFAULT_SELECT_LIMIT: int = Field(50, ge=1)
    MAX_SELECT_LIMIT: int = Field(1000, ge=1)

    LOG_LEVEL: str = "INFO"

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Create a single instance of the settings to use everywhere
settings = Settings()
