"""Per-provider usage counters."""

import threading
from dataclasses import asdict, dataclass, replace
from typing import Optional

from .base import TokenUsage


@dataclass
class ProviderUsage:
	"""Running totals for one provider. Latency is in seconds."""
	provider: str
	requests: int = 0
	successes: int = 0
	failures: int = 0
	prompt_tokens: int = 0
	completion_tokens: int = 0
	total_tokens: int = 0
	cost_estimate: float = 0.0
	total_latency: float = 0.0

	@property
	def average_latency(self) -> float:
		return self.total_latency / self.requests if self.requests else 0.0

	def to_dict(self) -> dict:
		data = asdict(self)
		data["average_latency"] = round(self.average_latency, 4)
		data["cost_estimate"] = round(self.cost_estimate, 6)
		return data


class UsageTracker:
	"""Lock-guarded usage counters, updated once per completed call."""

	def __init__(self):
		self._usage: dict[str, ProviderUsage] = {}
		self._lock = threading.Lock()

	def record(
		self,
		provider: str,
		*,
		success: bool,
		latency: float,
		usage: Optional[TokenUsage] = None,
		cost: float = 0.0,
	) -> None:
		with self._lock:
			stats = self._usage.setdefault(provider, ProviderUsage(provider=provider))
			stats.requests += 1
			if success:
				stats.successes += 1
			else:
				stats.failures += 1
			if usage is not None:
				stats.prompt_tokens += usage.prompt_tokens
				stats.completion_tokens += usage.completion_tokens
				stats.total_tokens += usage.total_tokens
			stats.cost_estimate += cost
			stats.total_latency += latency

	def get(self, provider: str) -> ProviderUsage:
		with self._lock:
			stats = self._usage.get(provider)
			return replace(stats) if stats else ProviderUsage(provider=provider)

	def all(self) -> dict[str, ProviderUsage]:
		with self._lock:
			return {name: replace(stats) for name, stats in self._usage.items()}
