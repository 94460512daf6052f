"""Tests for the LLM gateway: retry, selection, failover, streaming, usage."""

import asyncio
import gc
import random
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from codegen_orchestrator.errors import LLMError
from codegen_orchestrator.gateway import (
	ChatOptions,
	ChatStream,
	LeastConnectionsStrategy,
	LLMGateway,
	LLMResponse,
	RetryPolicy,
	RoundRobinStrategy,
	TokenUsage,
	UsageTracker,
	WeightedStrategy,
	create_strategy,
)
from codegen_orchestrator.gateway.litellm_provider import LiteLLMProvider, classify_exception
from codegen_orchestrator.config import ProviderSettings

from .helpers import ScriptedProvider, fast_gateway_settings, make_gateway

MESSAGES = [{"role": "user", "content": "hello"}]


def transient(provider: str = "a") -> LLMError:
	return LLMError("connection reset", provider=provider, model="m", code="network")


class TestRetry:
	"""retries counts retries, not attempts."""

	@pytest.mark.asyncio
	async def test_two_retries_make_three_attempts(self):
		provider = ScriptedProvider("a", responses=[transient(), transient(), transient(), "never reached"])
		gateway = make_gateway(provider, retries=2)

		with pytest.raises(LLMError) as exc_info:
			await gateway.chat("a", None, MESSAGES)

		assert len(provider.calls) == 3
		assert exc_info.value.details["attempts"] == 3

	@pytest.mark.asyncio
	async def test_recovers_on_later_attempt(self):
		provider = ScriptedProvider("a", responses=[transient(), "ok"])
		gateway = make_gateway(provider, retries=2)

		response = await gateway.chat("a", None, MESSAGES)

		assert response.content == "ok"
		assert len(provider.calls) == 2

	@pytest.mark.asyncio
	async def test_auth_errors_are_not_retried(self):
		error = LLMError("bad key", provider="a", model="m", code="auth")
		provider = ScriptedProvider("a", responses=[error, "ok"])
		gateway = make_gateway(provider, retries=5)

		with pytest.raises(LLMError) as exc_info:
			await gateway.chat("a", None, MESSAGES)

		assert exc_info.value.code == "auth"
		assert len(provider.calls) == 1

	@pytest.mark.asyncio
	async def test_per_call_retries_override(self):
		provider = ScriptedProvider("a", responses=[transient(), transient(), "ok"])
		gateway = make_gateway(provider, retries=2)

		with pytest.raises(LLMError):
			await gateway.chat("a", None, MESSAGES, ChatOptions(retries=0))
		assert len(provider.calls) == 1

	@pytest.mark.asyncio
	async def test_slow_call_times_out(self):
		provider = ScriptedProvider("a", responder=lambda m: "late", delay=1.0)
		gateway = make_gateway(provider, retries=0)

		with pytest.raises(LLMError) as exc_info:
			await gateway.chat("a", None, MESSAGES, ChatOptions(timeout=0.05))
		assert exc_info.value.code == "timeout"

	def test_backoff_delays(self):
		exponential = RetryPolicy(backoff="exponential", base_delay=0.5, max_delay=3.0)
		assert [exponential.delay(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 2.0, 3.0]
		linear = RetryPolicy(backoff="linear", base_delay=0.5, max_delay=10.0)
		assert [linear.delay(n) for n in (1, 2, 3)] == [0.5, 1.0, 1.5]

	@pytest.mark.asyncio
	async def test_condition_can_veto_retry(self):
		policy = RetryPolicy(retries=3, base_delay=0.0, condition=lambda e: e.code != "network")
		call = AsyncMock(side_effect=transient())

		with pytest.raises(LLMError):
			await policy.run(call, provider="a", model="m")
		assert call.await_count == 1

	@pytest.mark.asyncio
	async def test_gateway_retry_condition(self):
		limited = LLMError("slow down", provider="a", model="m", code="rate_limited")
		provider = ScriptedProvider("a", responses=[limited, "ok"])
		gateway = LLMGateway(
			[provider],
			fast_gateway_settings(retries=3),
			retry_condition=lambda e: e.code != "rate_limited",
		)

		with pytest.raises(LLMError) as exc_info:
			await gateway.chat("a", None, MESSAGES)

		assert exc_info.value.code == "rate_limited"
		assert len(provider.calls) == 1

	@pytest.mark.asyncio
	async def test_per_call_retry_condition(self):
		provider = ScriptedProvider("a", responses=[transient(), "ok"])
		gateway = make_gateway(provider, retries=3)

		with pytest.raises(LLMError):
			await gateway.chat("a", None, MESSAGES, ChatOptions(retry_condition=lambda e: False))
		assert len(provider.calls) == 1

		response = await gateway.chat("a", None, MESSAGES)
		assert response.content == "ok"


class TestProviderAvailability:
	"""Unconfigured or unknown providers fail without a call."""

	@pytest.mark.asyncio
	async def test_unconfigured_provider(self):
		provider = ScriptedProvider("a", configured=False, responses=["ok"])
		gateway = make_gateway(provider)

		assert not gateway.is_provider_available("a")
		with pytest.raises(LLMError) as exc_info:
			await gateway.chat("a", None, MESSAGES)
		assert exc_info.value.code == "provider_unavailable"
		assert provider.calls == []

	@pytest.mark.asyncio
	async def test_unknown_provider(self):
		gateway = make_gateway(ScriptedProvider("a"))
		with pytest.raises(LLMError) as exc_info:
			await gateway.chat("nope", None, MESSAGES)
		assert exc_info.value.code == "provider_unavailable"

	def test_models_listing(self):
		gateway = make_gateway(ScriptedProvider("a", models=["m1", "m2"]))
		assert gateway.get_available_models("a") == ["m1", "m2"]
		assert gateway.get_available_models("missing") == []

	@pytest.mark.asyncio
	async def test_unknown_model_falls_back_to_default(self):
		provider = ScriptedProvider("a", models=["m1", "m2"], responses=["ok"])
		gateway = make_gateway(provider)

		response = await gateway.chat("a", "other", MESSAGES)

		assert response.model == "m1"
		assert provider.calls[0]["model"] == "m1"


class TestSelection:
	"""Strategies and failover when the gateway picks the provider."""

	def test_round_robin_cycles(self):
		strategy = RoundRobinStrategy()
		picks = [strategy.select(["a", "b", "c"], {}) for _ in range(4)]
		assert picks == ["a", "b", "c", "a"]

	def test_least_connections(self):
		strategy = LeastConnectionsStrategy()
		assert strategy.select(["a", "b"], {"a": 2, "b": 1}) == "b"
		assert strategy.select(["a", "b"], {}) == "a"

	def test_weighted_respects_zero_weight(self):
		strategy = WeightedStrategy({"a": 0.0, "b": 1.0}, rng=random.Random(7))
		assert {strategy.select(["a", "b"], {}) for _ in range(20)} == {"b"}

	def test_unknown_strategy(self):
		with pytest.raises(ValueError):
			create_strategy("fastest")

	@pytest.mark.asyncio
	async def test_round_robin_across_calls(self):
		a = ScriptedProvider("a", responder=lambda m: "from a")
		b = ScriptedProvider("b", responder=lambda m: "from b")
		gateway = make_gateway(a, b, strategy="round_robin")

		first = await gateway.chat(None, None, MESSAGES)
		second = await gateway.chat(None, None, MESSAGES)

		assert {first.provider, second.provider} == {"a", "b"}

	@pytest.mark.asyncio
	async def test_failover_on_transient_error(self):
		a = ScriptedProvider("a", responses=[transient("a")] * 3)
		b = ScriptedProvider("b", responses=["from b"])
		gateway = make_gateway(a, b, retries=2, strategy="round_robin")

		response = await gateway.chat(None, None, MESSAGES)

		assert response.provider == "b"
		assert len(a.calls) == 3
		assert gateway.get_usage_stats("a").failures == 1
		assert gateway.get_usage_stats("b").successes == 1

	@pytest.mark.asyncio
	async def test_no_failover_when_provider_named(self):
		a = ScriptedProvider("a", responses=[transient("a")])
		b = ScriptedProvider("b", responses=["from b"])
		gateway = make_gateway(a, b, retries=0)

		with pytest.raises(LLMError):
			await gateway.chat("a", None, MESSAGES)
		assert b.calls == []

	@pytest.mark.asyncio
	async def test_skips_unconfigured_providers(self):
		a = ScriptedProvider("a", configured=False)
		b = ScriptedProvider("b", responses=["ok"])
		gateway = make_gateway(a, b)

		response = await gateway.chat(None, None, MESSAGES)
		assert response.provider == "b"


class TestUsage:
	"""Per-provider counters."""

	@pytest.mark.asyncio
	async def test_success_updates_counters(self):
		gateway = make_gateway(ScriptedProvider("a", responses=["ok", "ok"]))
		await gateway.chat("a", None, MESSAGES)
		await gateway.chat("a", None, MESSAGES)

		stats = gateway.get_usage_stats("a")
		assert stats.requests == 2
		assert stats.successes == 2
		assert stats.total_tokens == 30
		assert stats.cost_estimate == pytest.approx(2 * (10 * 0.001 + 5 * 0.002) / 1000)

	def test_threaded_records_are_not_lost(self):
		tracker = UsageTracker()

		def worker(_):
			for _ in range(1000):
				tracker.record("a", success=True, latency=0.001, usage=TokenUsage.of(2, 1), cost=0.5)

		with ThreadPoolExecutor(max_workers=8) as pool:
			list(pool.map(worker, range(8)))

		stats = tracker.get("a")
		assert stats.requests == 8000
		assert stats.successes == 8000
		assert stats.total_tokens == 24000
		assert stats.cost_estimate == pytest.approx(4000.0)

	@pytest.mark.asyncio
	async def test_concurrent_chats_count_every_call(self):
		provider = ScriptedProvider("a", responder=lambda m: "ok", delay=0.01)
		gateway = make_gateway(provider, max_in_flight=4)

		await asyncio.gather(*(gateway.chat("a", None, MESSAGES) for _ in range(20)))

		stats = gateway.get_usage_stats("a")
		assert stats.requests == 20
		assert stats.successes == 20
		assert gateway.balancer.in_flight() == 0

	def test_unused_provider_has_zero_usage(self):
		gateway = make_gateway(ScriptedProvider("a"))
		assert gateway.get_usage_stats("a").requests == 0
		assert gateway.get_usage_stats() == {}


class TestStreaming:
	"""Pull-based streams with explicit close."""

	@pytest.mark.asyncio
	async def test_collects_chunks(self):
		provider = ScriptedProvider("a", chunks=["Hel", "lo"])
		gateway = make_gateway(provider)

		stream = await gateway.chat("a", None, MESSAGES, ChatOptions(stream=True))

		assert isinstance(stream, ChatStream)
		assert await stream.collect() == "Hello"
		assert stream.closed
		assert gateway.get_usage_stats("a").successes == 1

	@pytest.mark.asyncio
	async def test_early_close_releases_slot(self):
		provider = ScriptedProvider("a", chunks=["one", "two", "three"])
		gateway = make_gateway(provider, max_in_flight=1)

		async with await gateway.chat("a", None, MESSAGES, ChatOptions(stream=True)) as stream:
			assert await stream.__anext__() == "one"
			assert gateway.balancer.in_flight("a") == 1

		assert provider.stream_finalized
		assert gateway.balancer.in_flight("a") == 0
		# The single slot is free again
		response = await asyncio.wait_for(gateway.chat("a", None, MESSAGES), timeout=1.0)
		assert isinstance(response, LLMResponse)

	@pytest.mark.asyncio
	async def test_abandoned_stream_releases_slot(self):
		provider = ScriptedProvider("a", chunks=["one", "two", "three"])
		gateway = make_gateway(provider, max_in_flight=1)

		stream = await gateway.chat("a", None, MESSAGES, ChatOptions(stream=True))
		async for _ in stream:
			break
		del stream
		gc.collect()
		await asyncio.sleep(0.01)

		assert gateway.balancer.in_flight("a") == 0
		assert provider.stream_finalized
		assert gateway.get_usage_stats("a").requests == 1
		response = await asyncio.wait_for(gateway.chat("a", None, MESSAGES), timeout=1.0)
		assert isinstance(response, LLMResponse)

	@pytest.mark.asyncio
	async def test_close_is_idempotent(self):
		gateway = make_gateway(ScriptedProvider("a", chunks=["x"]))
		stream = await gateway.chat("a", None, MESSAGES, ChatOptions(stream=True))

		await stream.aclose()
		await stream.aclose()

		assert gateway.get_usage_stats("a").requests == 1
		assert [chunk async for chunk in stream] == []

	@pytest.mark.asyncio
	async def test_stream_open_failure(self):
		provider = ScriptedProvider("a", responses=[LLMError("nope", provider="a", model="m", code="auth")])
		gateway = make_gateway(provider)

		with pytest.raises(LLMError):
			await gateway.chat("a", None, MESSAGES, ChatOptions(stream=True))
		assert gateway.balancer.in_flight() == 0


class TestLiteLLMProvider:
	"""Adapter over litellm, with the library call mocked."""

	def test_classify_status_codes(self):
		class HTTPError(Exception):
			def __init__(self, status_code):
				super().__init__("http")
				self.status_code = status_code

		assert classify_exception(HTTPError(429)) == "rate_limited"
		assert classify_exception(HTTPError(401)) == "auth"
		assert classify_exception(HTTPError(503)) == "server_error"
		assert classify_exception(asyncio.TimeoutError()) == "timeout"

	def test_configured_requires_key(self, monkeypatch):
		monkeypatch.delenv("OPENAI_API_KEY", raising=False)
		provider = LiteLLMProvider(ProviderSettings(name="openai", models=["gpt-4o-mini"], api_key_env="OPENAI_API_KEY"))
		assert not provider.is_configured()
		monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
		assert provider.is_configured()

	@pytest.mark.asyncio
	async def test_complete_maps_response(self, monkeypatch):
		monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
		provider = LiteLLMProvider(ProviderSettings(name="openai", models=["gpt-4o-mini"], api_key_env="OPENAI_API_KEY"))

		fake = SimpleNamespace(
			choices=[SimpleNamespace(message=SimpleNamespace(content="hi there"))],
			usage=SimpleNamespace(prompt_tokens=3, completion_tokens=2),
		)
		with patch("litellm.acompletion", new=AsyncMock(return_value=fake)) as acompletion:
			response = await provider.complete("gpt-4o-mini", MESSAGES, ChatOptions(temperature=0.1))

		assert response.content == "hi there"
		assert response.usage.total_tokens == 5
		kwargs = acompletion.await_args.kwargs
		assert kwargs["model"] == "openai/gpt-4o-mini"
		assert kwargs["api_key"] == "sk-test"
