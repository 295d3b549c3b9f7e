"""
StudyForge Utilities Package

Contains:
- circuit_breaker: Fail-fast wrapper around the generative model
- model_clients: Lazy-initialized Anthropic and OpenAI clients
"""

from app.utils.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from app.utils.model_clients import get_anthropic_client, get_openai_client, reset_clients

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "get_anthropic_client",
    "get_openai_client",
    "reset_clients",
]
