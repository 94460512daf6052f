"""Provider adapter backed by litellm (openai, anthropic, google, ollama)."""

import asyncio
import logging
import time
from typing import AsyncIterator

import litellm

from ..errors import LLMError
from .base import ChatOptions, LLMResponse, ProviderAdapter, TokenUsage

logger = logging.getLogger(__name__)

# Our provider names -> litellm model prefixes
_PREFIXES = {
	"openai": "openai",
	"anthropic": "anthropic",
	"google": "gemini",
	"ollama": "ollama",
}

# Providers that run locally and need no API key
_KEYLESS = frozenset({"ollama"})


def classify_exception(exc: BaseException) -> str:
	"""Map a litellm / transport exception to a gateway failure code."""
	if isinstance(exc, (asyncio.TimeoutError, litellm.exceptions.Timeout)):
		return "timeout"
	if isinstance(exc, litellm.exceptions.RateLimitError):
		return "rate_limited"
	if isinstance(exc, litellm.exceptions.AuthenticationError):
		return "auth"
	if isinstance(exc, litellm.exceptions.APIConnectionError):
		return "network"

	status = getattr(exc, "status_code", None)
	if isinstance(status, int):
		if status in (401, 403):
			return "auth"
		if status == 408:
			return "timeout"
		if status == 429:
			return "rate_limited"
		if status >= 500:
			return "server_error"
		if status >= 400:
			return "invalid_request"
	return "network"


class LiteLLMProvider(ProviderAdapter):
	"""Reaches any supported provider through litellm.acompletion."""

	@property
	def prefix(self) -> str:
		return _PREFIXES.get(self.name, self.name)

	def is_configured(self) -> bool:
		if not self.settings.enabled or not self.settings.models:
			return False
		if self.name in _KEYLESS:
			return bool(self.settings.base_url)
		return bool(self.settings.api_key)

	def _request(self, model: str, messages: list[dict], options: ChatOptions, stream: bool) -> dict:
		kwargs = {
			"model": f"{self.prefix}/{model}",
			"messages": messages,
			"stream": stream,
		}
		if options.temperature is not None:
			kwargs["temperature"] = options.temperature
		if options.max_tokens is not None:
			kwargs["max_tokens"] = options.max_tokens
		if options.timeout is not None:
			kwargs["timeout"] = options.timeout
		if self.settings.api_key:
			kwargs["api_key"] = self.settings.api_key
		if self.settings.base_url:
			kwargs["api_base"] = self.settings.base_url
		return kwargs

	def _error(self, model: str, exc: BaseException) -> LLMError:
		code = classify_exception(exc)
		return LLMError(
			f"{self.name} call failed: {exc}",
			provider=self.name,
			model=model,
			code=code,
			details={"exception": exc.__class__.__name__},
		)

	async def complete(self, model: str, messages: list[dict], options: ChatOptions) -> LLMResponse:
		start = time.monotonic()
		try:
			response = await litellm.acompletion(**self._request(model, messages, options, stream=False))
		except Exception as e:
			raise self._error(model, e) from e

		content = response.choices[0].message.content or ""
		usage = getattr(response, "usage", None)
		token_usage = TokenUsage.of(
			getattr(usage, "prompt_tokens", 0) or 0,
			getattr(usage, "completion_tokens", 0) or 0,
		)
		return LLMResponse(
			content=content,
			usage=token_usage,
			provider=self.name,
			model=model,
			latency=time.monotonic() - start,
		)

	async def open_stream(self, model: str, messages: list[dict], options: ChatOptions) -> AsyncIterator[str]:
		try:
			response = await litellm.acompletion(**self._request(model, messages, options, stream=True))
		except Exception as e:
			raise self._error(model, e) from e
		return self._chunks(model, response)

	async def _chunks(self, model: str, response) -> AsyncIterator[str]:
		try:
			async for chunk in response:
				delta = chunk.choices[0].delta.content if chunk.choices else None
				if delta:
					yield delta
		except Exception as e:
			raise self._error(model, e) from e
