"""
Provider selection strategies.

A strategy picks one provider from the available candidates once per
call. The balancer tracks in-flight requests per provider, which the
least-connections strategy reads.
"""

import random
import threading
from abc import ABC, abstractmethod
from typing import Optional


class SelectionStrategy(ABC):
	"""Picks a provider for one call."""

	name = ""

	@abstractmethod
	def select(self, candidates: list[str], in_flight: dict[str, int]) -> str:
		"""Return one of `candidates` (never empty)."""


class RoundRobinStrategy(SelectionStrategy):
	"""Cycles through the candidates in order."""

	name = "round_robin"

	def __init__(self):
		self._counter = 0

	def select(self, candidates: list[str], in_flight: dict[str, int]) -> str:
		choice = candidates[self._counter % len(candidates)]
		self._counter += 1
		return choice


class LeastConnectionsStrategy(SelectionStrategy):
	"""Fewest in-flight requests wins; ties go to the earlier candidate."""

	name = "least_connections"

	def select(self, candidates: list[str], in_flight: dict[str, int]) -> str:
		return min(candidates, key=lambda p: (in_flight.get(p, 0), candidates.index(p)))


class WeightedStrategy(SelectionStrategy):
	"""Random choice with probability proportional to provider weight."""

	name = "weighted"

	def __init__(self, weights: Optional[dict[str, float]] = None, rng: Optional[random.Random] = None):
		self.weights = dict(weights or {})
		self._rng = rng or random.Random()

	def select(self, candidates: list[str], in_flight: dict[str, int]) -> str:
		weights = [max(self.weights.get(p, 1.0), 0.0) for p in candidates]
		if not any(weights):
			return candidates[0]
		return self._rng.choices(candidates, weights=weights, k=1)[0]


_STRATEGIES: dict[str, type[SelectionStrategy]] = {
	"round_robin": RoundRobinStrategy,
	"least_connections": LeastConnectionsStrategy,
	"weighted": WeightedStrategy,
}


def create_strategy(name: str, weights: Optional[dict[str, float]] = None) -> SelectionStrategy:
	"""Build a strategy by its config name."""
	if name not in _STRATEGIES:
		raise ValueError(f"Unknown selection strategy: {name}")
	if name == "weighted":
		return WeightedStrategy(weights)
	return _STRATEGIES[name]()


class LoadBalancer:
	"""Selects providers and counts in-flight requests per provider."""

	def __init__(self, strategy: SelectionStrategy):
		self.strategy = strategy
		self._in_flight: dict[str, int] = {}
		self._lock = threading.Lock()

	def select(self, candidates: list[str]) -> str:
		if not candidates:
			raise ValueError("No candidate providers")
		with self._lock:
			return self.strategy.select(list(candidates), dict(self._in_flight))

	def acquire(self, provider: str) -> None:
		with self._lock:
			self._in_flight[provider] = self._in_flight.get(provider, 0) + 1

	def release(self, provider: str) -> None:
		with self._lock:
			self._in_flight[provider] = max(0, self._in_flight.get(provider, 0) - 1)

	def in_flight(self, provider: Optional[str] = None) -> int:
		with self._lock:
			if provider is None:
				return sum(self._in_flight.values())
			return self._in_flight.get(provider, 0)
