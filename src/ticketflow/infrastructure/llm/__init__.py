"""
LLM Client Infrastructure
=========================

Wrapper for LLM providers (OpenAI, Z.AI) providing a clean interface for
the triage classifier.

This module abstracts the LLM client implementation following the
Dependency Inversion Principle - the triage adapter depends on
``ILLMClient``, not on a provider SDK.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from openai import AsyncOpenAI
from zai import ZaiClient

from ticketflow.core import ConfigurationException, LLMException
from ticketflow.shared.infrastructure.logging import get_logger
from ticketflow.shared.infrastructure.metrics import PipelineMetricsExporter

logger = get_logger(__name__)


class ChatCompletionResult:
    """Result of a chat completion."""

    def __init__(
        self,
        content: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int
    ):
        self.content = content
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = prompt_tokens + completion_tokens
        self.latency_ms = latency_ms


class ILLMClient(ABC):
    """
    Interface for LLM client operations.

    Following Interface Segregation Principle - only methods
    actually needed by the application are defined.
    """

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 800,
        operation: str = "triage"
    ) -> ChatCompletionResult:
        """Generate chat completion."""

    async def close(self) -> None:
        """Release network resources."""


class _MeteredClient(ILLMClient):
    """Shared metrics export for provider clients."""

    def __init__(self, model: str, metrics: Optional[PipelineMetricsExporter] = None):
        self._model = model
        self._metrics = metrics

    async def _export(self, result: ChatCompletionResult, operation: str) -> None:
        if self._metrics is not None and self._metrics.is_enabled():
            await self._metrics.export_llm_metrics(
                model=result.model,
                prompt_tokens=result.prompt_tokens,
                completion_tokens=result.completion_tokens,
                latency_ms=result.latency_ms,
                operation=operation
            )


class ZAILLMClient(_MeteredClient):
    """
    Z.AI SDK client implementation for GLM models.

    The SDK is synchronous, so calls run in a worker thread.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        metrics: Optional[PipelineMetricsExporter] = None
    ):
        if not api_key:
            raise ConfigurationException("Z.AI API key not configured")
        super().__init__(model, metrics)
        self._client = ZaiClient(api_key=api_key)

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 800,
        operation: str = "triage"
    ) -> ChatCompletionResult:
        """
        Generate chat completion using GLM.

        Raises:
            LLMException: If completion fails
        """
        start_time = time.perf_counter()

        try:
            response = await asyncio.to_thread(
                self._client.chat.completions.create,
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens
            )
        except Exception as e:
            raise LLMException(f"Chat completion failed: {e}") from e

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        content = response.choices[0].message.content or ""

        usage = getattr(response, "usage", None)
        if usage is not None:
            prompt_tokens = usage.prompt_tokens
            completion_tokens = usage.completion_tokens
        else:
            # Rough character-based estimate when usage is missing
            prompt_tokens = len(str(messages)) // 4
            completion_tokens = len(content) // 4

        result = ChatCompletionResult(
            content=content,
            model=self._model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms
        )
        await self._export(result, operation)
        return result


class OpenAILLMClient(_MeteredClient):
    """
    OpenAI client implementation for GPT models.

    Requests JSON output so the triage adapter usually gets bare JSON.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        metrics: Optional[PipelineMetricsExporter] = None,
        timeout_seconds: Optional[float] = None
    ):
        if not api_key:
            raise ConfigurationException("OpenAI API key not configured")
        super().__init__(model, metrics)
        self._client = AsyncOpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=0)

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 800,
        operation: str = "triage"
    ) -> ChatCompletionResult:
        """
        Generate chat completion using OpenAI GPT.

        Args:
            messages: List of message dicts with 'role' and 'content'
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens to generate
            operation: Operation type for metrics

        Raises:
            LLMException: If completion fails
        """
        start_time = time.perf_counter()

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"}
            )
        except Exception as e:
            raise LLMException(f"Chat completion failed: {e}") from e

        latency_ms = int((time.perf_counter() - start_time) * 1000)

        result = ChatCompletionResult(
            content=response.choices[0].message.content or "",
            model=self._model,
            prompt_tokens=response.usage.prompt_tokens if response.usage else 0,
            completion_tokens=response.usage.completion_tokens if response.usage else 0,
            latency_ms=latency_ms
        )
        await self._export(result, operation)
        return result

    async def close(self) -> None:
        await self._client.close()


class MockLLMClient(ILLMClient):
    """
    Mock LLM client for development and demos.

    Returns a fenced JSON triage answer without calling external APIs,
    exercising the adapter's code-fence extraction.
    """

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 800,
        operation: str = "triage"
    ) -> ChatCompletionResult:
        mock_response = {
            "summary": "Mock triage summary.",
            "priority": "medium",
            "helpfulNotes": "Mock: no classifier configured, review the ticket manually.",
            "relatedSkills": ["General Support"],
        }
        content = f"```json\n{json.dumps(mock_response, indent=2)}\n```"
        return ChatCompletionResult(
            content=content,
            model="mock-model",
            prompt_tokens=100,
            completion_tokens=len(content.split()),
            latency_ms=0
        )


def build_llm_client(
    settings: Any,
    metrics: Optional[PipelineMetricsExporter] = None
) -> ILLMClient:
    """
    Create the LLM client for the configured provider.

    Raises:
        ConfigurationException: if the provider's API key is missing
    """
    provider = settings.llm_provider
    if provider == "openai":
        return OpenAILLMClient(
            api_key=settings.openai_api_key,
            model=settings.llm_model,
            metrics=metrics,
            timeout_seconds=settings.classifier_timeout_seconds
        )
    if provider == "zai":
        return ZAILLMClient(api_key=settings.zai_api_key, model=settings.llm_model, metrics=metrics)
    if provider == "mock":
        return MockLLMClient()
    raise ConfigurationException(f"Unsupported LLM provider: {provider}")


__all__ = [
    "ChatCompletionResult",
    "ILLMClient",
    "OpenAILLMClient",
    "ZAILLMClient",
    "MockLLMClient",
    "build_llm_client",
]
