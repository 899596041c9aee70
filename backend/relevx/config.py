"""Relevx configuration — settings, model tiers, research defaults."""

from typing import Literal

from pydantic_settings import BaseSettings

ModelTier = Literal["opus", "sonnet", "haiku"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Keys
    anthropic_api_key: str = ""
    brave_api_key: str = ""
    tavily_api_key: str = ""

    # Database
    database_url: str = "sqlite:///data/relevx.db"

    # Langfuse (empty = disabled)
    langfuse_public_key: str = ""
    langfuse_secret_key: str = ""
    langfuse_host: str = "http://localhost:3001"

    # Provider selection
    llm_provider: str = "claude"  # claude | hybrid
    search_provider: str = "brave"  # brave | tavily

    # LLM defaults
    default_max_tokens: int = 4096
    default_max_retries: int = 2  # Instructor validation retries
    default_temperature: float = 0.0
    model_opus: str = "claude-opus-4-6"
    model_sonnet: str = "claude-sonnet-4-6"
    model_haiku: str = "claude-haiku-4-5-20251001"
    query_model_tier: ModelTier = "haiku"
    analysis_model_tier: ModelTier = "haiku"
    report_model_tier: ModelTier = "sonnet"

    # Research loop defaults
    research_max_iterations: int = 3
    research_queries_per_iteration: int = 5
    research_max_candidates_per_iteration: int = 25
    research_concurrent_extractions: int = 3
    research_results_per_query: int = 5
    research_relevancy_batch_size: int = 10
    research_report_max_length: int = 5000

    # Retry policy for query generation, relevance scoring, report compilation
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0

    # Search providers
    search_min_request_interval: float = 2.5  # seconds between requests per provider
    search_timeout_seconds: float = 30.0

    # Content extraction
    extract_timeout_seconds: float = 20.0
    extract_max_content_chars: int = 20000
    extract_snippet_chars: int = 1500
    extract_user_agent: str = "Relevx-Research-Assistant/1.0 (+https://relevx.ai)"

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_check_interval_minutes: float = 15.0
    scheduler_max_concurrent_runs: int = 3

    # Email / SMTP (for report delivery)
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from_address: str = ""  # Defaults to smtp_user when empty
    dashboard_url: str = "http://localhost:3000"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()


def get_model_map() -> dict[str, str]:
    """Resolve model map from settings (env-overridable)."""
    return {
        "opus": settings.model_opus,
        "sonnet": settings.model_sonnet,
        "haiku": settings.model_haiku,
    }


MODEL_MAP: dict[str, str] = get_model_map()
