"""
Lazy-initialized generative-model clients.

Clients are created on first use so importing the app never needs API keys.
Anthropic is the default provider for generation and feedback; OpenAI serves
generation when LLM_PROVIDER=openai and always handles video transcription.

SDK retries are disabled: one failed call fails the file, and the circuit
breaker in llm_service decides when to stop calling.
"""

import os
from typing import Optional
import httpx
from anthropic import Anthropic
from openai import OpenAI

_anthropic: Optional[Anthropic] = None
_openai: Optional[OpenAI] = None

# Long generations need a generous read timeout; connects should fail fast
ANTHROPIC_TIMEOUT = httpx.Timeout(float(os.getenv("ANTHROPIC_HTTP_TIMEOUT", "120")), connect=30.0)
OPENAI_TIMEOUT = httpx.Timeout(float(os.getenv("OPENAI_HTTP_TIMEOUT", "120")), connect=10.0)


def _api_key(name: str, hint: str) -> str:
    api_key = os.getenv(name)
    if not api_key:
        raise ValueError(f"{name} environment variable is not set. {hint}")
    return api_key


def get_anthropic_client() -> Anthropic:
    """
    Get the shared Anthropic client.

    Raises:
        ValueError: If ANTHROPIC_API_KEY is not set
    """
    global _anthropic

    if _anthropic is None:
        _anthropic = Anthropic(
            api_key=_api_key("ANTHROPIC_API_KEY", "Get your API key from https://console.anthropic.com"),
            timeout=ANTHROPIC_TIMEOUT,
            max_retries=0,
        )

    return _anthropic


def get_openai_client() -> OpenAI:
    """
    Get the shared OpenAI client.

    Raises:
        ValueError: If OPENAI_API_KEY is not set
    """
    global _openai

    if _openai is None:
        _openai = OpenAI(
            api_key=_api_key("OPENAI_API_KEY", "Set it to enable OpenAI generation and video transcription."),
            timeout=OPENAI_TIMEOUT,
            max_retries=0,
        )

    return _openai


def reset_clients() -> None:
    """Drop cached clients (useful for testing or when API keys change)."""
    global _anthropic, _openai
    _anthropic = None
    _openai = None
