from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"

    # database & redis
    # Plain strings so sqlite:// and redis:// URLs are always accepted
    DATABASE_URL: str = "sqlite:///./nuggets.db"
    REDIS_URL: str = "redis://localhost:6379/0"

    # llm
    OPENROUTER_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None
    LLM_MODEL: str = "gpt-4o-mini"
    # Hard cap on concurrent LLM calls per process
    LLM_MAX_CONCURRENCY: int = 4
    LLM_MAX_TOKENS: int = 1000
    LLM_GROUP_MAX_TOKENS: int = 1500
    LLM_TIMEOUT_SECONDS: int = 60

    # auth / security
    API_AUTH_KEY: str | None = None
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    # scraping
    SCRAPE_TIMEOUT_SECONDS: int = 10
    SCRAPE_CACHE_TTL_SECONDS: int = 60 * 60 * 24
    SCRAPE_MAX_WORDS: int = 500
    SCRAPE_USER_AGENT: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    )

    # feeds
    FEED_MAX_ITEMS: int = 10
    FEED_USER_AGENT: str = "Nugget RSS Reader/1.0"

    # pipeline
    DEDUP_RETENTION_DAYS: int = 30
    # Items stuck in `processing` longer than this are re-dispatched
    PROCESSING_TIMEOUT_SECONDS: int = 15 * 60

    # entitlements
    DEFAULT_TIER: str = "free"
    OWNER_TIERS_JSON: str | None = None  # {"owner-id": "pro", ...}
    FREE_TIER_AI_ENABLED: bool = True

    # classification
    CATEGORY_KEYWORDS_JSON: str | None = None  # {"technology": ["ai", ...], ...}

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
