from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"

    # database & redis
    # Plain string so sqlite:// URLs (tests, local dev) are accepted alongside postgres
    DATABASE_URL: str
    REDIS_URL: str = "redis://localhost:6379/0"

    # external APIs
    OPENROUTER_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None
    TAVILY_API_KEY: str | None = None
    TAVILY_BASE_URL: str = "https://api.tavily.com"
    WEB_SEARCH_TIMEOUT_SECONDS: int = 20

    # auth / security
    API_AUTH_KEY: str | None = None
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    # llm
    LLM_MODEL: str = "openai/gpt-4o-mini"
    # Hard cap on concurrent LLM calls per process
    LLM_MAX_CONCURRENCY: int = 4
    LLM_TIMEOUT_SECONDS: int = 60

    # distillation
    DISTILL_MAX_DOC_CHARS: int = 4000
    DISTILL_DEFAULT_LIMIT: int = 5
    DISTILL_MAX_LIMIT: int = 20

    # web scout
    WEB_SCOUT_MIN_QUALITY_RESULTS: int = 3
    WEB_SCOUT_MIN_RELEVANCE: float = 0.6
    WEB_SCOUT_MAX_ITERATIONS: int = 5
    WEB_SCOUT_MAX_QUERIES: int = 10
    WEB_SCOUT_RESULTS_PER_QUERY: int = 8
    WEB_SCOUT_DAILY_GOAL: str = (
        "Find interesting high-quality articles from trusted sources that complement my vault."
    )
    # Comma-separated allow-list used by the scheduled (unattended) scout
    WEB_SCOUT_ALLOWED_DOMAINS: str = ""

    # runs left in "running" longer than this are swept to "error"
    STALE_RUN_TIMEOUT_MINUTES: int = 60

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def web_scout_allowed_domains(self) -> list[str]:
        return [
            d.strip().lower()
            for d in self.WEB_SCOUT_ALLOWED_DOMAINS.split(",")
            if d.strip()
        ]


@lru_cache
def get_settings() -> Settings:
    return Settings()
