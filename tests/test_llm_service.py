"""
Tests for the generative-model collaborator.

Tests cover:
- Provider dispatch and response extraction
- Timeout enforcement
- Upstream error mapping
- Circuit breaker behavior
"""

import time
import httpx
import pytest
import anthropic
from unittest.mock import MagicMock, patch

import app.services.llm_service as llm_module
from app.services.errors import GenerationServiceError
from app.services.llm_service import llm_service
from app.utils.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState


def anthropic_message(text: str) -> MagicMock:
    block = MagicMock()
    block.type = "text"
    block.text = text
    message = MagicMock()
    message.content = [block]
    return message


def anthropic_status_error(status_code: int, body: str) -> anthropic.APIStatusError:
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    response = httpx.Response(status_code, text=body, request=request)
    return anthropic.APIStatusError(body, response=response, body=None)


@pytest.fixture
def anthropic_provider(monkeypatch):
    monkeypatch.setattr(llm_service, "provider", "anthropic")
    client = MagicMock()
    with patch.object(llm_module, "get_anthropic_client", return_value=client):
        yield client


class TestComplete:
    """Test successful calls"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_anthropic_text_blocks_joined(self, anthropic_provider):
        anthropic_provider.messages.create.return_value = anthropic_message('{"ok": true}')

        text = await llm_service.complete("system", "user", max_tokens=100)

        assert text == '{"ok": true}'
        kwargs = anthropic_provider.messages.create.call_args.kwargs
        assert kwargs["system"] == "system"
        assert kwargs["max_tokens"] == 100
        assert kwargs["messages"] == [{"role": "user", "content": "user"}]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_openai_provider(self, monkeypatch):
        monkeypatch.setattr(llm_service, "provider", "openai")
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.content = "{}"
        client = MagicMock()
        client.chat.completions.create.return_value = response

        with patch.object(llm_module, "get_openai_client", return_value=client):
            text = await llm_service.complete("system", "user", max_tokens=50)

        assert text == "{}"
        messages = client.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "system"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_response_is_service_error(self, anthropic_provider):
        anthropic_provider.messages.create.return_value = anthropic_message("")

        with pytest.raises(GenerationServiceError, match="empty response"):
            await llm_service.complete("system", "user", max_tokens=100)


class TestFailures:
    """Test error mapping"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout(self, anthropic_provider, monkeypatch):
        """A call slower than the timeout is a service error"""
        monkeypatch.setattr(llm_service, "timeout_seconds", 0.05)
        anthropic_provider.messages.create.side_effect = lambda **kwargs: time.sleep(0.5)

        with pytest.raises(GenerationServiceError, match="timed out"):
            await llm_service.complete("system", "user", max_tokens=100)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_upstream_status_and_body_kept(self, anthropic_provider):
        anthropic_provider.messages.create.side_effect = anthropic_status_error(529, "overloaded_error")

        with pytest.raises(GenerationServiceError) as exc_info:
            await llm_service.complete("system", "user", max_tokens=100)

        assert exc_info.value.upstream_status == 529
        assert "overloaded_error" in exc_info.value.upstream_body

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.setattr(llm_service, "provider", "anthropic")
        with patch.object(llm_module, "get_anthropic_client", side_effect=ValueError("ANTHROPIC_API_KEY is not set")):
            with pytest.raises(GenerationServiceError, match="ANTHROPIC_API_KEY"):
                await llm_service.complete("system", "user", max_tokens=100)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_calling(self, anthropic_provider):
        for _ in range(llm_service.circuit_breaker.config.failure_threshold):
            llm_service.circuit_breaker.record_failure()

        with pytest.raises(GenerationServiceError, match="temporarily unavailable"):
            await llm_service.complete("system", "user", max_tokens=100)

        anthropic_provider.messages.create.assert_not_called()
        assert llm_service.is_healthy() is False


class TestCircuitBreaker:
    """Test the breaker state machine"""

    @pytest.mark.unit
    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=2))
        breaker.record_failure()
        assert breaker.can_execute() is True
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.can_execute() is False

    @pytest.mark.unit
    def test_half_open_after_recovery_timeout(self):
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=1, recovery_timeout=0, success_threshold=1))
        breaker.record_failure()

        assert breaker.can_execute() is True
        assert breaker.state == CircuitState.HALF_OPEN

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.unit
    def test_success_resets_failure_count(self):
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=3))
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()

        assert breaker.failure_count == 0
