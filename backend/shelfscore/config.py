from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {
        "env_file": "../.env",
        "extra": "ignore",
        "env_prefix": "",
        "case_sensitive": False,
    }

    # Database (empty = persistence disabled)
    database_url: str = ""
    store_timeout_seconds: float = 5.0
    cache_ttl_hours: int = 168

    # AI completion service
    ai_provider: Literal["openrouter", "anthropic"] = "openrouter"
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    anthropic_api_key: str = ""
    search_model: str = "perplexity/sonar"
    scoring_model: str = "meta-llama/llama-3-8b-instruct"
    anthropic_search_model: str = "claude-sonnet-4-5-20250929"
    anthropic_scoring_model: str = "claude-haiku-4-5-20251001"
    ai_timeout_seconds: float = 30.0

    # Scraping service
    scraper_api_key: str = ""
    scraper_base_url: str = "https://api.firecrawl.dev"
    extract_timeout_seconds: float = 9.0

    # Structured barcode database
    off_base_url: str = "https://world.openfoodfacts.org"
    lookup_timeout_seconds: float = 10.0

    # Liveness probe
    probe_timeout_seconds: float = 10.0
    user_agent: str = "shelfscore/0.1 (+https://github.com/shelfscore)"

    # Rate limiting
    rate_limit_window_seconds: float = 60.0
    rate_limit_max_requests: int = 5

    # Scoring
    score_content_chars: int = 4000

    # App
    environment: str = "development"
    log_level: str = "INFO"
    log_file: str = ""


settings = Settings()
