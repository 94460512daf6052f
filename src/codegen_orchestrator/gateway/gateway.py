"""
LLM Gateway - one chat contract over several providers.

Responsibilities:
- Select a provider (configured strategy) when the caller doesn't name one
- Retry transient failures with backoff, then fail over to the next provider
- Cap simultaneous in-flight calls
- Stream responses as ChatStream
- Keep per-provider usage counters
"""

import asyncio
import logging
import time
from typing import Callable, Optional, Union

from ..config import GatewaySettings, ProviderSettings
from ..errors import LLMError
from .balancer import LoadBalancer, SelectionStrategy, create_strategy
from .base import ChatOptions, LLMResponse, ProviderAdapter, TokenUsage, estimate_tokens
from .litellm_provider import LiteLLMProvider
from .retry import RetryPolicy
from .streaming import ChatStream
from .usage import ProviderUsage, UsageTracker

logger = logging.getLogger(__name__)


class LLMGateway:
	"""Unified chat interface with retry, failover, load balancing and usage stats."""

	def __init__(
		self,
		providers: list[ProviderAdapter],
		settings: Optional[GatewaySettings] = None,
		strategy: Optional[SelectionStrategy] = None,
		retry_condition: Optional[Callable[[LLMError], bool]] = None,
	):
		self.settings = settings or GatewaySettings()
		self.retry_condition = retry_condition
		self._providers: dict[str, ProviderAdapter] = {p.name: p for p in providers}
		weights = {p.name: p.weight for p in providers}
		self.balancer = LoadBalancer(strategy or create_strategy(self.settings.strategy, weights))
		self.usage = UsageTracker()
		self._slots = asyncio.Semaphore(self.settings.max_in_flight)

	@classmethod
	def from_settings(
		cls,
		settings: GatewaySettings,
		providers: dict[str, ProviderSettings],
	) -> "LLMGateway":
		"""Build a gateway with one LiteLLMProvider per configured provider."""
		adapters = [LiteLLMProvider(p) for p in providers.values()]
		return cls(adapters, settings)

	# -- Introspection --

	@property
	def provider_names(self) -> list[str]:
		return list(self._providers)

	def get_provider(self, name: str) -> Optional[ProviderAdapter]:
		return self._providers.get(name)

	def is_provider_available(self, provider: str) -> bool:
		"""Configuration-based check; does not contact the provider."""
		adapter = self._providers.get(provider)
		return adapter is not None and adapter.is_configured()

	def available_providers(self) -> list[str]:
		return [name for name in self._providers if self.is_provider_available(name)]

	def get_available_models(self, provider: str) -> list[str]:
		adapter = self._providers.get(provider)
		return adapter.available_models if adapter else []

	def get_usage_stats(self, provider: Optional[str] = None) -> Union[ProviderUsage, dict[str, ProviderUsage]]:
		"""Usage for one provider, or for every provider that has been called."""
		if provider is not None:
			return self.usage.get(provider)
		return self.usage.all()

	# -- Chat --

	def _resolve_options(self, options: Optional[ChatOptions]) -> ChatOptions:
		options = options or ChatOptions()
		s = self.settings
		return ChatOptions(
			stream=options.stream,
			temperature=s.temperature if options.temperature is None else options.temperature,
			max_tokens=s.max_tokens if options.max_tokens is None else options.max_tokens,
			timeout=s.timeout if options.timeout is None else options.timeout,
			retries=s.retries if options.retries is None else options.retries,
			backoff=options.backoff or s.backoff,
			retry_condition=options.retry_condition or self.retry_condition,
		)

	def _policy(self, options: ChatOptions) -> RetryPolicy:
		return RetryPolicy(
			retries=options.retries,
			backoff=options.backoff,
			base_delay=self.settings.base_delay,
			max_delay=self.settings.max_delay,
			condition=options.retry_condition,
		)

	def _unavailable(self, provider: str, model: Optional[str]) -> LLMError:
		return LLMError(
			f"Provider '{provider}' is not available",
			provider=provider,
			model=model or "",
			code="provider_unavailable",
		)

	async def chat(
		self,
		provider: Optional[str],
		model: Optional[str],
		messages: list[dict],
		options: Optional[ChatOptions] = None,
	) -> Union[LLMResponse, ChatStream]:
		"""
		Send messages to a provider.

		With provider=None the configured strategy picks one, once per call;
		if it then fails on a transient error after its retries, the next
		available provider is tried. Returns a ChatStream when
		options.stream is set, otherwise an LLMResponse.

		Raises:
			LLMError: on exhaustion or a non-retryable failure
		"""
		options = self._resolve_options(options)
		auto = provider is None

		if auto:
			candidates = self.available_providers()
			if not candidates:
				raise self._unavailable("any", model)
		else:
			if not self.is_provider_available(provider):
				raise self._unavailable(provider, model)
			candidates = [provider]

		await self._slots.acquire()
		handed_off = False
		try:
			tried: list[str] = []
			while True:
				remaining = [c for c in candidates if c not in tried]
				name = self.balancer.select(remaining)
				adapter = self._providers[name]
				model_name = adapter.resolve_model(model)
				try:
					if options.stream:
						stream = await self._open_stream(adapter, model_name, messages, options)
						handed_off = True
						return stream
					return await self._complete(adapter, model_name, messages, options)
				except LLMError as e:
					tried.append(name)
					can_failover = auto and self.settings.failover and e.retryable
					if not can_failover or len(tried) >= len(candidates):
						raise
					logger.warning(f"Provider {name} failed ({e.code}), failing over")
		finally:
			if not handed_off:
				self._slots.release()

	async def _complete(
		self,
		adapter: ProviderAdapter,
		model: str,
		messages: list[dict],
		options: ChatOptions,
	) -> LLMResponse:
		self.balancer.acquire(adapter.name)
		start = time.monotonic()
		try:
			response = await self._policy(options).run(
				lambda: adapter.complete(model, messages, options),
				provider=adapter.name,
				model=model,
				timeout=options.timeout,
			)
		except LLMError:
			self.usage.record(adapter.name, success=False, latency=time.monotonic() - start)
			raise
		finally:
			self.balancer.release(adapter.name)

		latency = time.monotonic() - start
		response.provider = adapter.name
		response.model = model
		response.latency = latency
		self.usage.record(
			adapter.name,
			success=True,
			latency=latency,
			usage=response.usage,
			cost=adapter.cost(response.usage),
		)
		logger.debug(f"{adapter.name}/{model} completed in {latency:.2f}s ({response.usage.total_tokens} tokens)")
		return response

	async def _open_stream(
		self,
		adapter: ProviderAdapter,
		model: str,
		messages: list[dict],
		options: ChatOptions,
	) -> ChatStream:
		self.balancer.acquire(adapter.name)
		start = time.monotonic()
		try:
			chunks = await self._policy(options).run(
				lambda: adapter.open_stream(model, messages, options),
				provider=adapter.name,
				model=model,
				timeout=options.timeout,
			)
		except LLMError:
			self.balancer.release(adapter.name)
			self.usage.record(adapter.name, success=False, latency=time.monotonic() - start)
			raise

		prompt_tokens = sum(estimate_tokens(m.get("content", "")) for m in messages)

		def finish(stream: ChatStream) -> None:
			self.balancer.release(adapter.name)
			self._slots.release()
			usage = TokenUsage.of(prompt_tokens, estimate_tokens(stream.text))
			self.usage.record(
				adapter.name,
				success=stream.error is None,
				latency=time.monotonic() - start,
				usage=usage,
				cost=adapter.cost(usage),
			)

		return ChatStream(chunks, provider=adapter.name, model=model, on_close=finish)
