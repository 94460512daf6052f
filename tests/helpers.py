"""Shared test fixtures and helpers for codegen-orchestrator tests."""

import asyncio
import json
import re
from pathlib import Path
from typing import Callable, Optional

from codegen_orchestrator.config import Config, GatewaySettings, ProviderSettings, SandboxSettings
from codegen_orchestrator.gateway import ChatOptions, LLMGateway, LLMResponse, ProviderAdapter, TokenUsage
from codegen_orchestrator.runtime import Runtime, build_runtime
from codegen_orchestrator.sandbox import SandboxManager


class ScriptedProvider(ProviderAdapter):
	"""In-memory provider answering from a script.

	Queued `responses` are consumed first (an exception instance is
	raised instead of returned); after that `responder(messages)` is
	called, if given.
	"""

	def __init__(
		self,
		name: str = "scripted",
		responses: Optional[list] = None,
		responder: Optional[Callable[[list[dict]], str]] = None,
		models: Optional[list[str]] = None,
		configured: bool = True,
		weight: float = 1.0,
		chunks: Optional[list[str]] = None,
		delay: float = 0.0,
	):
		super().__init__(ProviderSettings(
			name=name,
			models=models or ["test-model"],
			weight=weight,
			prompt_cost_per_1k=0.001,
			completion_cost_per_1k=0.002,
		))
		self.responses = list(responses or [])
		self.responder = responder
		self.configured = configured
		self.chunks = list(chunks or [])
		self.delay = delay
		self.calls: list[dict] = []
		self.stream_finalized = False

	def is_configured(self) -> bool:
		return self.configured

	def _next(self, messages: list[dict]):
		if self.responses:
			item = self.responses.pop(0)
		elif self.responder is not None:
			item = self.responder(messages)
		else:
			item = "{}"
		if isinstance(item, BaseException):
			raise item
		return item

	async def complete(self, model: str, messages: list[dict], options: ChatOptions) -> LLMResponse:
		self.calls.append({"model": model, "messages": messages, "options": options})
		if self.delay:
			await asyncio.sleep(self.delay)
		content = self._next(messages)
		return LLMResponse(content=content, usage=TokenUsage.of(10, 5))

	async def open_stream(self, model: str, messages: list[dict], options: ChatOptions):
		self.calls.append({"model": model, "messages": messages, "options": options, "stream": True})
		if self.responses and isinstance(self.responses[0], BaseException):
			raise self.responses.pop(0)
		chunks = list(self.chunks)

		async def generate():
			try:
				for chunk in chunks:
					yield chunk
			finally:
				self.stream_finalized = True

		return generate()


def system_prompt(messages: list[dict]) -> str:
	return next((m["content"] for m in messages if m["role"] == "system"), "")


def user_prompt(messages: list[dict]) -> str:
	return next((m["content"] for m in reversed(messages) if m["role"] == "user"), "")


DEFAULT_PYTHON = 'def greet(name):\n    return f"Hello, {name}!"\n\n\nprint(greet("world"))\n'

DEFAULT_TESTS = (
	"```python\nfrom solution import *\n\n\n"
	"def test_greet():\n    assert greet(\"Ada\") == \"Hello, Ada!\"\n```"
)


def workflow_responder(
	analysis: Optional[Callable[[str], dict]] = None,
	questions: Optional[list[str]] = None,
	refined: str = "Write a program as described.",
	code: str = DEFAULT_PYTHON,
	language: Optional[str] = None,
	explanation: str = "A small program.",
	tests: str = DEFAULT_TESTS,
	documentation: str = "# Usage\nRun it.",
) -> Callable[[list[dict]], str]:
	"""Route each agent's request to a canned answer by its system prompt."""

	def respond(messages: list[dict]) -> str:
		system = system_prompt(messages)
		user = user_prompt(messages)
		if "scoping" in system:
			data = analysis(user) if analysis else {"user_intent": user.splitlines()[0], "tech_stack": [], "features": []}
			return json.dumps(data)
		if "clarification questions" in system:
			return json.dumps({"questions": questions or ["Which language should I use?", "What features do you need?"]})
		if system.startswith("Rewrite the conversation"):
			return refined
		if "expert programmer" in system:
			target = re.search(r"Language: (\w+)", user)
			return json.dumps({
				"code": code,
				"language": language or (target.group(1) if target else "python"),
				"explanation": explanation,
			})
		if "unit tests" in system:
			return tests
		if "documentation" in system:
			return documentation
		return ""

	return respond


def fast_gateway_settings(**overrides) -> GatewaySettings:
	"""Gateway settings with no backoff delay."""
	settings = GatewaySettings(base_delay=0.0, max_delay=0.0, timeout=5.0)
	for key, value in overrides.items():
		setattr(settings, key, value)
	return settings


def make_gateway(*providers: ProviderAdapter, **overrides) -> LLMGateway:
	return LLMGateway(list(providers), fast_gateway_settings(**overrides))


def make_config(tmp_path: Path) -> Config:
	config = Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data")
	config.sandbox = SandboxSettings(timeout=10.0, memory_limit_mb=256)
	config.ensure_dirs()
	return config


def make_runtime(tmp_path: Path, provider: Optional[ProviderAdapter] = None, **gateway_overrides) -> Runtime:
	"""Runtime wired to a scripted provider and a sandbox under tmp_path."""
	config = make_config(tmp_path)
	provider = provider or ScriptedProvider(responder=workflow_responder())
	gateway = make_gateway(provider, **gateway_overrides)
	sandbox = SandboxManager(config.sandbox, root=config.sandbox_dir)
	return build_runtime(config, gateway=gateway, sandbox=sandbox)


def capture_tools(config, register_fn: Callable) -> dict:
	"""Register tools on a mock MCP and return the captured tool functions.

	Args:
		config: Config object to pass to the registration function
		register_fn: The registration function (e.g., register_workflow_tools)

	Returns:
		Dict mapping tool name to the tool function
	"""
	captured = {}

	class MockMCP:
		def tool(self):
			def decorator(fn):
				captured[fn.__name__] = fn
				return fn
			return decorator

	register_fn(MockMCP(), config)
	return captured
