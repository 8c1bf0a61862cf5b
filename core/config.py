"""
Configuration management for the publishing engine.

Centralizes all configuration including:
- Adapter HTTP behaviour (timeouts, read retries, rate limit buffer)
- Multi-platform fan-out width
- Scheduler and queue defaults
- Event streaming server
- Platform credentials for the bundled entry point
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class AdapterConfig:
    """HTTP behaviour shared by all platform adapters."""
    timeout: float = field(default_factory=lambda: float(os.getenv("ADAPTER_TIMEOUT", "30")))
    retry_attempts: int = field(default_factory=lambda: int(os.getenv("ADAPTER_RETRY_ATTEMPTS", "3")))
    retry_delay: float = field(default_factory=lambda: float(os.getenv("ADAPTER_RETRY_DELAY", "1.0")))
    rate_limit_buffer: int = field(default_factory=lambda: int(os.getenv("ADAPTER_RATE_LIMIT_BUFFER", "10")))
    user_agent: str = "multichannel-publisher/1.0"


@dataclass
class PublisherConfig:
    """Multi-platform publisher settings."""
    max_concurrent_publishes: int = field(
        default_factory=lambda: int(os.getenv("MAX_CONCURRENT_PUBLISHES", "3"))
    )
    history_limit: int = field(default_factory=lambda: int(os.getenv("PUBLISH_HISTORY_LIMIT", "1000")))


@dataclass
class SchedulerConfig:
    """Scheduler driver loop and default queue settings."""
    schedule_check_interval: float = field(
        default_factory=lambda: float(os.getenv("SCHEDULE_CHECK_INTERVAL", "60"))
    )
    queue_process_interval: float = field(
        default_factory=lambda: float(os.getenv("QUEUE_PROCESS_INTERVAL", "30"))
    )
    default_max_concurrent: int = field(default_factory=lambda: int(os.getenv("QUEUE_MAX_CONCURRENT", "5")))
    default_max_retries: int = field(default_factory=lambda: int(os.getenv("QUEUE_MAX_RETRIES", "3")))
    default_retry_delay: float = field(default_factory=lambda: float(os.getenv("QUEUE_RETRY_DELAY", "5.0")))
    default_exponential_backoff: bool = field(
        default_factory=lambda: _env_bool("QUEUE_EXPONENTIAL_BACKOFF", "true")
    )
    past_tolerance: float = field(default_factory=lambda: float(os.getenv("SCHEDULE_PAST_TOLERANCE", "60")))
    default_timezone: str = field(default_factory=lambda: os.getenv("SCHEDULE_TIMEZONE", "UTC"))


@dataclass
class StreamingConfig:
    """Event stream (SSE) server."""
    enabled: bool = field(default_factory=lambda: _env_bool("EVENTS_ENABLED", "true"))
    host: str = field(default_factory=lambda: os.getenv("EVENTS_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("EVENTS_PORT", "8765")))
    heartbeat_interval: int = 30
    event_history_size: int = 200


@dataclass
class CredentialsConfig:
    """Platform credentials read from the environment by main.py."""
    wordpress_site_url: str = field(default_factory=lambda: os.getenv("WORDPRESS_SITE_URL", ""))
    wordpress_username: str = field(default_factory=lambda: os.getenv("WORDPRESS_USERNAME", ""))
    wordpress_app_password: str = field(default_factory=lambda: os.getenv("WORDPRESS_APP_PASSWORD", ""))

    medium_integration_token: str = field(default_factory=lambda: os.getenv("MEDIUM_INTEGRATION_TOKEN", ""))

    linkedin_access_token: str = field(default_factory=lambda: os.getenv("LINKEDIN_ACCESS_TOKEN", ""))
    linkedin_person_urn: str = field(default_factory=lambda: os.getenv("LINKEDIN_PERSON_URN", ""))

    def configured_platforms(self) -> list[str]:
        """Platforms with enough credentials to attempt authentication."""
        platforms = []
        if self.wordpress_site_url and self.wordpress_username and self.wordpress_app_password:
            platforms.append("wordpress")
        if self.medium_integration_token:
            platforms.append("medium")
        if self.linkedin_access_token:
            platforms.append("linkedin")
        return platforms


@dataclass
class Config:
    """Main configuration class."""

    adapter: AdapterConfig = field(default_factory=AdapterConfig)
    publisher: PublisherConfig = field(default_factory=PublisherConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)

    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if self.adapter.timeout <= 0:
            issues.append("ADAPTER_TIMEOUT must be positive")
        if self.adapter.retry_attempts < 1:
            issues.append("ADAPTER_RETRY_ATTEMPTS must be at least 1")
        if self.publisher.max_concurrent_publishes < 1:
            issues.append("MAX_CONCURRENT_PUBLISHES must be at least 1")
        if self.scheduler.default_max_concurrent < 1:
            issues.append("QUEUE_MAX_CONCURRENT must be at least 1")
        if self.scheduler.default_max_retries < 0:
            issues.append("QUEUE_MAX_RETRIES cannot be negative")

        if not self.credentials.configured_platforms():
            issues.append("No platform credentials configured (WordPress, Medium or LinkedIn)")

        return issues


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reload_config() -> Config:
    """Reload configuration from environment."""
    global _config
    _config = Config.from_env()
    return _config
