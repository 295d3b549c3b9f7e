"""
Generative-model collaborator.

Wraps the Anthropic and OpenAI SDKs behind one call:

    text = await llm_service.complete(system_prompt, user_prompt, max_tokens)

Every call is bounded by GENERATION_TIMEOUT_SECONDS and guarded by a circuit
breaker. No retries happen here; any failure surfaces as
GenerationServiceError carrying the upstream status and body.

Usage:
    from app.services.llm_service import llm_service

    try:
        raw = await llm_service.complete(SYSTEM, prompt, max_tokens=4000)
    except GenerationServiceError as e:
        logger.error("upstream status=%s body=%s", e.upstream_status, e.upstream_body)
"""

import os
import asyncio
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

import anthropic
import openai
import sentry_sdk

from app.services.errors import GenerationServiceError
from app.utils.model_clients import get_anthropic_client, get_openai_client
from app.utils.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState

logger = logging.getLogger(__name__)

LLM_PROVIDER = os.getenv("LLM_PROVIDER", "anthropic")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
GENERATION_TIMEOUT_SECONDS = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "90"))

# Upstream bodies are kept for diagnostics, not echoed in full
MAX_UPSTREAM_BODY_CHARS = 2000


class LLMService:
    """
    Singleton wrapper for generative-model calls with timeout and circuit breaker.
    """

    _instance: Optional['LLMService'] = None

    def __new__(cls) -> 'LLMService':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.provider = LLM_PROVIDER
        self.timeout_seconds = GENERATION_TIMEOUT_SECONDS
        self.circuit_breaker = CircuitBreaker(CircuitBreakerConfig(
            failure_threshold=5,
            recovery_timeout=120.0  # Try again after 2 minutes
        ))
        self._call_history: List[Dict[str, Any]] = []
        self._initialized = True

        logger.info(f"LLM service initialized (provider={self.provider})")

    @property
    def model(self) -> str:
        return OPENAI_MODEL if self.provider == "openai" else ANTHROPIC_MODEL

    async def complete(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        """
        Send one system + user prompt and return the raw response text.

        Raises:
            GenerationServiceError: circuit open, timeout, transport failure,
                non-2xx upstream response, or empty response
        """
        if not self.circuit_breaker.can_execute():
            self._record_call(success=False, circuit_open=True)
            sentry_sdk.capture_message(
                "Circuit breaker open - generation requests blocked",
                level="warning",
            )
            logger.warning(
                f"Circuit breaker OPEN - rejecting generation request. "
                f"Failures: {self.circuit_breaker.failure_count}"
            )
            raise GenerationServiceError(
                "Generation service temporarily unavailable due to repeated failures. "
                "Please try again later."
            )

        start_time = datetime.utcnow()
        try:
            text = await asyncio.wait_for(
                asyncio.to_thread(self._call_provider, system_prompt, user_prompt, max_tokens),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            self._on_failure(e)
            raise GenerationServiceError(
                f"Generation timed out after {self.timeout_seconds:.0f}s"
            ) from e
        except GenerationServiceError as e:
            self._on_failure(e)
            raise
        except (anthropic.APIStatusError, openai.APIStatusError) as e:
            self._on_failure(e)
            body = _response_body(e)
            raise GenerationServiceError(
                f"Generation API error: {e.status_code} - {body}",
                upstream_status=e.status_code,
                upstream_body=body
            ) from e
        except (anthropic.APIError, openai.APIError) as e:
            # Connection failures and client-side timeouts
            self._on_failure(e)
            raise GenerationServiceError(f"Generation API unreachable: {e}") from e
        except ValueError as e:
            # Missing API key
            self._on_failure(e)
            raise GenerationServiceError(str(e)) from e

        latency_ms = (datetime.utcnow() - start_time).total_seconds() * 1000
        self.circuit_breaker.record_success()
        self._record_call(success=True, latency_ms=latency_ms)
        logger.debug(f"Generation call succeeded in {latency_ms:.0f}ms")

        return text

    def _call_provider(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        if self.provider == "openai":
            response = get_openai_client().chat.completions.create(
                model=OPENAI_MODEL,
                max_tokens=max_tokens,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )
            text = response.choices[0].message.content if response.choices else None
        else:
            message = get_anthropic_client().messages.create(
                model=ANTHROPIC_MODEL,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            )
            text = "".join(
                block.text for block in message.content
                if getattr(block, "type", None) == "text"
            )

        if not text:
            raise GenerationServiceError("Generation API returned an empty response")

        return text

    def _on_failure(self, error: Exception):
        self.circuit_breaker.record_failure()
        self._record_call(success=False, error=str(error))

        sentry_sdk.capture_exception(error)

        logger.error(
            f"Generation call failed: {error!r}. "
            f"Circuit state: {self.circuit_breaker.state.value}"
        )

    def _record_call(
        self,
        success: bool,
        latency_ms: float = 0,
        error: str = None,
        circuit_open: bool = False
    ):
        """Record call for metrics tracking."""
        self._call_history.append({
            "timestamp": datetime.utcnow().isoformat(),
            "model": self.model,
            "success": success,
            "latency_ms": latency_ms,
            "error": error,
            "circuit_open": circuit_open
        })

        # Keep only last 1000 calls in memory
        if len(self._call_history) > 1000:
            self._call_history = self._call_history[-1000:]

    def get_status(self) -> Dict[str, Any]:
        """Service status for the health endpoint."""
        recent_calls = self._call_history[-100:]
        successful_recent = sum(1 for c in recent_calls if c.get("success"))

        return {
            "provider": self.provider,
            "model": self.model,
            "circuit_breaker": {
                "state": self.circuit_breaker.state.value,
                "failure_count": self.circuit_breaker.failure_count,
            },
            "recent_performance": {
                "total_calls": len(recent_calls),
                "successful_calls": successful_recent,
                "failed_calls": len(recent_calls) - successful_recent,
            },
        }

    def is_healthy(self) -> bool:
        return self.circuit_breaker.state != CircuitState.OPEN


def _response_body(error: Exception) -> str:
    response = getattr(error, "response", None)
    body = getattr(response, "text", None) or str(error)
    return body[:MAX_UPSTREAM_BODY_CHARS]


# Global singleton instance
llm_service = LLMService()
