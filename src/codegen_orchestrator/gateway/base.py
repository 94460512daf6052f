"""
Gateway contract types and the provider adapter interface.

Every backing provider is reached through a ProviderAdapter: send
messages, get a response or a stream of text chunks, or fail with
an LLMError carrying one of the failure codes in errors.py.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional

from ..config import ProviderSettings


@dataclass
class ChatOptions:
	"""Per-call options. None means "use the gateway default"."""
	stream: bool = False
	temperature: Optional[float] = None
	max_tokens: Optional[int] = None
	timeout: Optional[float] = None
	retries: Optional[int] = None
	backoff: Optional[str] = None
	# Extra veto on retrying a transient LLMError; falls back to the gateway's
	retry_condition: Optional[Callable[[Exception], bool]] = None


@dataclass
class TokenUsage:
	prompt_tokens: int = 0
	completion_tokens: int = 0
	total_tokens: int = 0

	@classmethod
	def of(cls, prompt_tokens: int, completion_tokens: int) -> "TokenUsage":
		return cls(prompt_tokens, completion_tokens, prompt_tokens + completion_tokens)

	def to_dict(self) -> dict:
		return {
			"prompt_tokens": self.prompt_tokens,
			"completion_tokens": self.completion_tokens,
			"total_tokens": self.total_tokens,
		}


@dataclass
class LLMResponse:
	"""A completed (non-streaming) chat call."""
	content: str
	usage: TokenUsage = field(default_factory=TokenUsage)
	provider: str = ""
	model: str = ""
	latency: float = 0.0


def estimate_tokens(text: str) -> int:
	"""Rough token count (about four characters per token)."""
	return max(1, len(text) // 4) if text else 0


class ProviderAdapter(ABC):
	"""One backing language-model provider."""

	def __init__(self, settings: ProviderSettings):
		self.settings = settings

	@property
	def name(self) -> str:
		return self.settings.name

	@property
	def weight(self) -> float:
		return self.settings.weight

	@property
	def available_models(self) -> list[str]:
		return list(self.settings.models)

	@property
	def default_model(self) -> str:
		return self.settings.default_model

	def resolve_model(self, model: Optional[str]) -> str:
		"""Requested model if this provider serves it, else the default."""
		if model and (not self.settings.models or model in self.settings.models):
			return model
		return self.default_model

	@abstractmethod
	def is_configured(self) -> bool:
		"""Whether calls can be attempted (credentials or endpoint present)."""

	@abstractmethod
	async def complete(self, model: str, messages: list[dict], options: ChatOptions) -> LLMResponse:
		"""Single-shot completion. Raises LLMError."""

	@abstractmethod
	async def open_stream(self, model: str, messages: list[dict], options: ChatOptions) -> AsyncIterator[str]:
		"""Open a streaming completion and return its chunk iterator. Raises LLMError."""

	def cost(self, usage: TokenUsage) -> float:
		"""Estimated USD cost for a call."""
		return (
			usage.prompt_tokens / 1000 * self.settings.prompt_cost_per_1k
			+ usage.completion_tokens / 1000 * self.settings.completion_cost_per_1k
		)
