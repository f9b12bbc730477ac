"""Configuration settings for the application."""

from typing import Dict

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = True
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # LLM Configuration
    LLM_PROVIDER: str = "openai"  # Options: openai, anthropic, ollama
    LLM_TEMPERATURE: float = 0.7
    LLM_TIMEOUT: float = 60.0  # seconds, per completion request
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None  # e.g. https://openrouter.ai/api/v1
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3.1"

    # Tool servers, e.g. MCP_SERVERS='{"rag": "http://rag-mcp:8080", "git": "http://git-mcp:8080"}'
    MCP_SERVERS: Dict[str, str] = {}
    TOOL_TIMEOUT: float = 30.0  # seconds, per remote tool request
    ENABLE_LOCAL_TOOLS: bool = True

    # Agent loop
    MAX_TOOL_ITERATIONS: int = 10
    MAX_PARALLEL_TOOLS: int = 4
    APPEND_SOURCES: bool = True

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
