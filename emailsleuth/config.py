from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Optional AI text analysis
    openai_api_key: str = Field(default="")
    llm_model: str = Field(default="gpt-4o-mini")

    # SMTP verification
    smtp_enabled: bool = Field(default=True)
    smtp_sender: str = Field(default="verify@emailchecker.local")
    smtp_helo_domain: str = Field(default="emailchecker.local")

    # Browser rendering
    browser_enabled: bool = Field(default=True)
    browser_headless: bool = Field(default=True)

    # Application
    debug: bool = Field(default=False)
    log_json: bool = Field(default=False)
    config_path: str = Field(default="config.yml")


class CrawlConfig:
    """Crawl budget and timeout configuration from config.yml."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.page_budget: int = data.get("page_budget", 15)
        self.target_emails: int = data.get("target_emails", 5)
        self.http_timeout_seconds: float = data.get("http_timeout_seconds", 20)
        self.navigation_timeouts_seconds: dict[str, float] = data.get(
            "navigation_timeouts_seconds",
            {"networkidle": 45, "load": 30, "domcontentloaded": 20},
        )
        self.hydration_wait_seconds: float = data.get("hydration_wait_seconds", 8)
        self.dom_stability_timeout_seconds: float = data.get("dom_stability_timeout_seconds", 8)
        self.dom_quiet_ms: int = data.get("dom_quiet_ms", 1500)
        self.shopify_settle_ms: int = data.get("shopify_settle_ms", 5000)
        self.js_shell_text_threshold: int = data.get("js_shell_text_threshold", 500)
        self.max_nested_sitemaps: int = data.get("max_nested_sitemaps", 5)
        self.sitemap_depth: int = data.get("sitemap_depth", 2)
        self.generate_patterns: bool = data.get("generate_patterns", True)


class VerificationConfig:
    """SMTP and DNS verification configuration from config.yml."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.smtp_timeout_seconds: float = data.get("smtp_timeout_seconds", 8)
        self.smtp_port: int = data.get("smtp_port", 25)
        self.batch_timeout_seconds: float = data.get("batch_timeout_seconds", 30)
        self.cache_ttl_seconds: int = data.get("cache_ttl_seconds", 3600)
        self.dns_lifetime_seconds: float = data.get("dns_lifetime_seconds", 5)
        self.max_mx_hosts: int = data.get("max_mx_hosts", 2)


class BatchConfig:
    """Multi-URL batch configuration from config.yml."""

    def __init__(self, data: dict[str, Any]) -> None:
        concurrency = data.get("concurrency", 5)
        self.concurrency: int = max(1, min(int(concurrency), 10))


class AppConfig:
    """Combined application configuration from .env and config.yml."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings()
        self._load_yaml()

    def _load_yaml(self) -> None:
        config_path = Path(self.settings.config_path)
        if config_path.exists():
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        else:
            data = {}

        self.crawl = CrawlConfig(data.get("crawl", {}))
        self.verification = VerificationConfig(data.get("verification", {}))
        self.batch = BatchConfig(data.get("batch", {}))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@lru_cache
def get_config() -> AppConfig:
    """Get cached full config instance."""
    return AppConfig(get_settings())
