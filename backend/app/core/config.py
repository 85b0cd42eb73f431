from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"

    # auth / security
    API_AUTH_KEY: str | None = None
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    # llm
    OPENROUTER_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None
    LLM_MODEL: str = "gpt-4o-mini"
    # Hard cap on concurrent LLM calls per process
    LLM_MAX_CONCURRENCY: int = 4
    LLM_TEMPERATURE: float = 0.2
    LLM_TOP_P: float = 1.0
    LLM_MAX_TOKENS: int = 2048
    LLM_PRICEBOOK_JSON: str | None = None

    # plan generation retry / timeout (milliseconds)
    LLM_TIMEOUT_MS: int = 120_000
    LLM_RETRY_MAX_ATTEMPTS: int = 3
    LLM_RETRY_INITIAL_DELAY_MS: int = 400
    LLM_RETRY_MAX_DELAY_MS: int = 3200
    LLM_RETRY_BACKOFF_MULTIPLIER: float = 2.0
    LLM_RETRY_JITTER_RATIO: float = 0.2

    # feature toggles (accept 1/0, true/false, on/off, yes/no)
    ENABLE_PROMPT_INTEL: bool = True
    ENABLE_PERSONALIZATION: bool = True
    # Route /plan through the LLM planner when a key is configured
    ENABLE_LLM_PLANNER: bool = True

    # personalization
    PERSONALIZATION_TIMEOUT_MS: int = 15_000
    PROMPT_INTEL_LLM_THRESHOLD: float = 0.75

    # in-memory session store
    SESSION_MAX_IDLE_MINUTES: int = 60
    SESSION_MAX_EVENTS: int = 50
    SESSION_MAX_CONCURRENT: int = 1000

    # JSONL decision log (offline evaluation)
    DECISION_LOG_ENABLED: bool = False
    DECISION_LOG_DIR: str = "logs/decisions"

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()


def llm_api_key_configured() -> bool:
    settings = get_settings()
    return bool((settings.OPENROUTER_API_KEY or "").strip() or (settings.OPENAI_API_KEY or "").strip())
