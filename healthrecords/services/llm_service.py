"""
LLM service for document analysis.
Talks to an OpenAI-compatible chat-completions endpoint over httpx.
"""

import time
from typing import Any, Dict, List, Optional

import httpx

from ..utils.cache import cached
from ..utils.config import settings
from ..utils.logging import get_logger, monitor_latency

logger = get_logger(__name__)


class LLMUnavailableError(RuntimeError):
    """Raised when no API key is configured or the provider call fails."""


class LLMService:
    """Chat-completions client with response caching and call statistics."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        model: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.llm_api_key
        self.endpoint = endpoint or settings.llm_endpoint
        self.model = model or settings.llm_model
        self._transport = transport
        self.performance_stats = {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "avg_latency": 0.0,
            "latencies": [],
        }

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and self.api_key != "your-api-key-here"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(settings.request_timeout),
            headers={"Authorization": f"Bearer {self.api_key}"},
            transport=self._transport,
        )

    @cached("llm_completion", ttl=1800, skip_first_arg=True)
    @monitor_latency("analysis_llm_completion", "llm")
    async def complete(
        self,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send a chat-completions request and return ``{"content", "model", "usage"}``."""
        if not self.configured:
            raise LLMUnavailableError("API key not configured")

        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": settings.llm_temperature if temperature is None else temperature,
            "max_tokens": max_tokens or settings.llm_max_tokens,
            "stream": False,
        }

        self.performance_stats["total_requests"] += 1
        start_time = time.time()
        try:
            async with self._client() as client:
                response = await client.post(self.endpoint, json=payload)
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPStatusError as e:
            self.performance_stats["failed_requests"] += 1
            logger.error(f"LLM API error {e.response.status_code}: {e}")
            raise LLMUnavailableError(f"LLM API error {e.response.status_code}") from e
        except httpx.HTTPError as e:
            self.performance_stats["failed_requests"] += 1
            logger.error(f"LLM API call failed: {e}")
            raise LLMUnavailableError(str(e)) from e

        self._record_latency((time.time() - start_time) * 1000)
        self.performance_stats["successful_requests"] += 1

        return {
            "content": result["choices"][0]["message"]["content"],
            "model": result.get("model", self.model),
            "usage": result.get("usage", {}),
        }

    def _record_latency(self, latency_ms: float) -> None:
        latencies = self.performance_stats["latencies"]
        latencies.append(latency_ms)
        if len(latencies) > 100:
            del latencies[0]
        self.performance_stats["avg_latency"] = sum(latencies) / len(latencies)

    def get_performance_stats(self) -> Dict[str, Any]:
        return {
            "total_requests": self.performance_stats["total_requests"],
            "successful_requests": self.performance_stats["successful_requests"],
            "failed_requests": self.performance_stats["failed_requests"],
            "avg_latency": self.performance_stats["avg_latency"],
            "configured": self.configured,
            "model": self.model,
        }


llm_service = LLMService()
