"""
Application configuration using Pydantic Settings.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    ollama_url: str = "http://localhost:11434"
    database_path: str = "./ai_contexts.db"
    request_timeout: float = 120.0

    # Cache maintenance, in seconds
    context_cleanup_interval: float = 5 * 60
    context_expiry_time: float = 30 * 60

    max_tokens_per_context: int = 2048
    chars_per_token: int = 4
    long_query_threshold: int = 1000

    default_model: str = "llama3.2:3b"
    code_model: str = "codellama:7b-instruct"
    large_model: str = "mistral:7b-instruct"

    temperature: float = 0.7
    top_p: float = 0.9

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Global settings instance
settings = Settings()
