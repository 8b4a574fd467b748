"""Application settings with environment variable support."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pathlib import Path


_BASE_DIR = Path(__file__).parent.parent.parent.resolve()


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CRE_",  # CRE_DATABASE_URL, CRE_GEMINI_API_KEY, etc.
        extra="ignore",
    )

    # Paths
    base_dir: Path = _BASE_DIR
    data_dir: Path = _BASE_DIR / "data"
    sources_file: Path = _BASE_DIR / "config" / "sources.json"

    # Database
    database_url: str = f"sqlite:///{_BASE_DIR / 'data' / 'cre_news.db'}"

    # LLM
    llm_provider: str = "gemini"  # "gemini", "anthropic", or "openai"
    gemini_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    llm_model: str = "gemini-2.5-flash-lite"
    # Relevance, geography, tags and interest filtering
    llm_categorization_model: str = "gemini-3-flash-preview"
    llm_max_tokens: int = 8000
    llm_temperature: float = 0.0

    # Ingestion
    fetch_timeout_seconds: int = 30
    fetch_max_retries: int = 3
    og_image_timeout_seconds: int = 5
    firecrawl_api_key: Optional[str] = None
    firecrawl_api_url: str = "https://api.firecrawl.dev/v2/scrape"
    firecrawl_max_age_ms: int = 3 * 60 * 60 * 1000
    apify_api_token: Optional[str] = None
    apify_linkedin_actor: str = "kfiWbq3boy3dWKbiL"
    linkedin_cookies: Optional[str] = None  # JSON array exported from the browser
    linkedin_posts_per_source: int = 10

    # Processing
    categorize_batch_size: int = 50
    article_lookback_days: int = 7
    max_national_articles: int = 5
    max_local_articles: int = 10
    max_search_results: int = 20
    search_candidate_limit: int = 100

    # Newsletter delivery
    newsletter_name: str = "OpenMidMarket News"
    public_base_url: str = "https://app.openmidmarket.com"
    feedback_email: str = "hello@openmidmarket.com"
    email_from: str = '"OpenMidmarket" <hello@openmidmarket.com>'
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    send_delay_seconds: float = 0.1
    use_generated_subject: bool = False

    # Scheduling
    default_send_day_utc: int = 5  # Friday, Sunday = 0
    default_send_hour_utc: int = 15

    # Operations
    cron_secret: Optional[str] = None
    slack_webhook_url: Optional[str] = None


settings = Settings()
