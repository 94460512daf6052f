"""Retry with linear or exponential backoff for gateway calls."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import LLMError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
	"""
	How many times to retry a failed call and how long to wait in between.

	`retries` counts retries, not attempts: retries=2 makes at most 3
	attempts. Only transient failures are retried, and `condition` can
	veto a retry for a specific error.
	"""
	retries: int = 2
	backoff: str = "exponential"
	base_delay: float = 0.5
	max_delay: float = 8.0
	condition: Optional[Callable[[LLMError], bool]] = None

	@property
	def max_attempts(self) -> int:
		return self.retries + 1

	def delay(self, failures: int) -> float:
		"""Wait before the next attempt after `failures` failed attempts."""
		if self.backoff == "linear":
			wait = self.base_delay * failures
		else:
			wait = self.base_delay * (2 ** (failures - 1))
		return min(wait, self.max_delay)

	def should_retry(self, error: LLMError, attempt: int) -> bool:
		if attempt >= self.max_attempts or not error.retryable:
			return False
		if self.condition is not None and not self.condition(error):
			return False
		return True

	async def run(
		self,
		call: Callable[[], Awaitable[T]],
		*,
		provider: str,
		model: str,
		timeout: Optional[float] = None,
	) -> T:
		"""Run `call` until it succeeds or the policy gives up. Raises LLMError."""
		attempt = 0
		while True:
			attempt += 1
			try:
				if timeout is None:
					return await call()
				return await asyncio.wait_for(call(), timeout=timeout)
			except asyncio.TimeoutError as e:
				error = LLMError(
					f"{provider} call timed out after {timeout:g}s",
					provider=provider,
					model=model,
					code="timeout",
				)
				error.__cause__ = e
			except LLMError as e:
				error = e

			if not self.should_retry(error, attempt):
				error.details.setdefault("attempts", attempt)
				raise error

			wait = self.delay(attempt)
			logger.warning(
				f"{provider}/{model} attempt {attempt}/{self.max_attempts} failed ({error.code}), "
				f"retrying in {wait:.2f}s"
			)
			await asyncio.sleep(wait)
