"""Configuration settings for the application."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    DATA_DIR: str = "./data"
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # LLM Configuration
    LLM_PROVIDER: str = "openai"  # Options: openai, anthropic, gemini, tgi
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    GEMINI_API_KEY: str | None = None
    GEMINI_MODEL: str = "gemini-2.0-flash"
    TGI_ENDPOINT: str = "http://tgi:8080/generate"
    LLM_TEMPERATURE: float = 0.4
    LLM_TIMEOUT_SEC: float = 60.0
    LLM_MAX_RETRIES: int = 3
    LLM_RETRY_DELAY_SEC: float = 1.0

    # Agent loop
    MAX_AI_STEPS: int = 6
    MAX_FORMAT_RETRIES: int = 2
    HISTORY_WINDOW: int = 12
    CONTEXT_MAX_CHARS: int = 4000
    TOOL_RESULT_MAX_CHARS: int = 12000

    # Documents
    DOCUMENT_MAX_BYTES: int = 10 * 1024 * 1024

    # Course data loaded by the API (demo data when the file is missing)
    COURSE_DATA_PATH: str = "./data/course_data.json"

    # Audit trail (empty string disables it)
    AUDIT_LOG_PATH: str = "./data/coursepilot_audit.jsonl"

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
