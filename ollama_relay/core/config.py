"""
Application Configuration
Loads settings from environment variables using Pydantic Settings.
"""
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    # Application
    APP_NAME: str = "Ollama Relay"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"
    UVICORN_HOST: str = "0.0.0.0"
    UVICORN_PORT: int = 8000

    # Upstream generation API
    OLLAMA_URL: str = "http://localhost:11434/api/generate"
    OLLAMA_MODEL: str = "llama2"
    OLLAMA_TIMEOUT_SECONDS: float = 300.0
    OLLAMA_CONNECT_TIMEOUT_SECONDS: float = 10.0

    # NDJSON reassembly, 0 disables the cap
    NDJSON_MAX_BUFFER_CHARS: int = 0

    # Chat / presence
    CHAT_MAX_PROMPT_LENGTH: int = 10000
    CLIENT_NAME_MAX_LENGTH: int = 64
    BROADCAST_MAX_LENGTH: int = 2000
    STATS_INTERVAL_SECONDS: float = 30.0

    # CORS
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def ndjson_max_buffer_chars(self) -> int | None:
        """Reassembler buffer cap, or None when unlimited."""
        return self.NDJSON_MAX_BUFFER_CHARS if self.NDJSON_MAX_BUFFER_CHARS > 0 else None


# Singleton instance
settings = Settings()
