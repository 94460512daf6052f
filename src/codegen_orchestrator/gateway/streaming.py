"""Pull-based, single-pass chat stream with explicit close."""

import asyncio
import logging
import time
from typing import AsyncIterator, Callable, Optional

from ..errors import LLMError

logger = logging.getLogger(__name__)

# Strong references to iterator closes scheduled from __del__
_pending_closes: set[asyncio.Task] = set()


class ChatStream:
	"""
	Async iterator of text chunks from one provider.

	Not restartable: once exhausted, failed or closed it yields nothing more.
	Closing (explicitly, via `async with`, or by reaching the end) releases
	the connection and the gateway slot exactly once. A stream dropped
	while still open is released when it is garbage collected.
	"""

	def __init__(
		self,
		chunks: AsyncIterator[str],
		*,
		provider: str,
		model: str,
		on_close: Optional[Callable[["ChatStream"], None]] = None,
	):
		self.provider = provider
		self.model = model
		self._chunks = chunks
		self._on_close = on_close
		self._parts: list[str] = []
		self._closed = False
		self.error: Optional[LLMError] = None
		self.started_at = time.monotonic()
		self.finished_at: Optional[float] = None

	@property
	def closed(self) -> bool:
		return self._closed

	@property
	def text(self) -> str:
		"""Everything received so far."""
		return "".join(self._parts)

	@property
	def latency(self) -> float:
		end = self.finished_at if self.finished_at is not None else time.monotonic()
		return end - self.started_at

	def __aiter__(self) -> "ChatStream":
		return self

	async def __anext__(self) -> str:
		if self._closed:
			raise StopAsyncIteration
		try:
			chunk = await self._chunks.__anext__()
		except StopAsyncIteration:
			await self.aclose()
			raise
		except LLMError as e:
			self.error = e
			await self.aclose()
			raise
		except Exception as e:
			self.error = LLMError(
				f"Stream from {self.provider} failed: {e}",
				provider=self.provider,
				model=self.model,
				code="network",
			)
			await self.aclose()
			raise self.error from e
		self._parts.append(chunk)
		return chunk

	async def aclose(self) -> None:
		"""Release the underlying connection. Safe to call more than once."""
		if self._closed:
			return
		self._closed = True
		self.finished_at = time.monotonic()
		close = getattr(self._chunks, "aclose", None)
		try:
			if close is not None:
				await close()
		finally:
			if self._on_close is not None:
				self._on_close(self)

	def __del__(self) -> None:
		# Abandoned without aclose(), e.g. `break` out of `async for`
		if getattr(self, "_closed", True):
			return
		self._closed = True
		self.finished_at = time.monotonic()
		logger.debug(f"Stream from {self.provider}/{self.model} abandoned, releasing")
		close = getattr(self._chunks, "aclose", None)
		if close is not None:
			try:
				loop = asyncio.get_running_loop()
			except RuntimeError:
				loop = None
			if loop is not None:
				task = loop.create_task(close())
				_pending_closes.add(task)
				task.add_done_callback(_pending_closes.discard)
		if self._on_close is not None:
			self._on_close(self)

	async def collect(self) -> str:
		"""Drain the stream and return the full text."""
		async for _ in self:
			pass
		return self.text

	async def __aenter__(self) -> "ChatStream":
		return self

	async def __aexit__(self, exc_type, exc, tb) -> None:
		await self.aclose()
