"""
Publishing Engine Core Components

Foundational infrastructure shared by adapters, publisher and scheduler:
- Configuration loaded from the environment
- Error taxonomy with stable error codes
- Circuit breaker for per-platform resilience
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerOpen, CircuitState
from .config import Config, get_config
from .errors import (
    AuthError,
    ConfigurationError,
    NotFoundError,
    PublishingError,
    RateLimitError,
    TransientNetworkError,
    UnsupportedContentError,
    UnsupportedOperationError,
    ValidationError,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerOpen",
    "CircuitState",
    "Config",
    "get_config",
    "PublishingError",
    "AuthError",
    "RateLimitError",
    "ValidationError",
    "NotFoundError",
    "TransientNetworkError",
    "UnsupportedOperationError",
    "UnsupportedContentError",
    "ConfigurationError",
]
