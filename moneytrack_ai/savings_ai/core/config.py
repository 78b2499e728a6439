"""
Application configuration loader and it handles:
- Environment variables
- Chat-completion provider settings
- Generation loop limits and session lifetimes
- Database configuration

And, the main purpose:
Central place for system configuration.
"""


from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./savings.db"

    # LLM
    LLM_PROVIDER: str = "clova"  # clova | openai | mock (for no-key dev)
    LLM_API_KEY: str = ""
    LLM_BASE_URL: str = "https://clovastudio.stream.ntruss.com/v1/openai"
    LLM_MODEL: str = "HCX-005"
    LLM_TEMPERATURE: float = 0.5
    LLM_TOP_P: float = 0.8
    LLM_MAX_TOKENS: int = 2000
    LLM_TIMEOUT_SECONDS: float = 60.0
    LLM_CONNECT_TIMEOUT_SECONDS: float = 10.0
    LLM_STREAM_DEADLINE: float = 180.0  # wall-clock limit for one streamed turn
    LLM_MAX_RETRIES: int = 2  # only before the first streamed byte

    # Generation loop
    MAX_TOOL_ITERATIONS: int = 10
    DEFAULT_DURATION_MONTHS: int = 12
    FALLBACK_SUGGESTED_SAVINGS: float = 500000.0
    TRANSACTION_READ_LIMIT: int = 100

    # Sessions + streaming
    SESSION_TTL_COMPLETED: float = 300.0
    SESSION_TTL_FAILED: float = 60.0
    STREAM_POLL_INTERVAL: float = 1.0
    STREAM_IDLE_TIMEOUT: float = 300.0  # polled stream gives up after this long without a change

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
