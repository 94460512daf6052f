"""
Named in-memory caches with TTL and size-bounded eviction.

Three caches are used by the workflow: `conversation` (analyses),
`code` (generated programs) and `execution` (sandbox results). Each is
bounded by max_size and evicts by LRU or FIFO order.
"""

import asyncio
import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .config import CacheSettings

logger = logging.getLogger(__name__)


class EvictionPolicy(str, Enum):
	LRU = "lru"
	FIFO = "fifo"


@dataclass
class CacheEntry:
	"""A cache entry with its lifetime."""
	key: str
	value: Any
	created_at: float
	expires_at: float

	def is_expired(self, now: float) -> bool:
		return now >= self.expires_at


@dataclass
class CacheStats:
	"""Cache statistics."""
	size: int = 0
	max_size: int = 0
	hits: int = 0
	misses: int = 0
	sets: int = 0
	evictions: int = 0
	expirations: int = 0

	@property
	def hit_rate(self) -> float:
		total = self.hits + self.misses
		return self.hits / total if total > 0 else 0.0

	def to_dict(self) -> dict:
		data = asdict(self)
		data["hit_rate"] = round(self.hit_rate, 3)
		return data


class Cache:
	"""
	Size- and TTL-bounded key/value store.

	Expired entries are dropped lazily on access and by purge_expired().
	Every read-modify-write happens under one lock.
	"""

	def __init__(
		self,
		name: str,
		max_size: int = 128,
		ttl: float = 600.0,
		policy: EvictionPolicy | str = EvictionPolicy.LRU,
		clock: Callable[[], float] = time.monotonic,
	):
		if max_size < 1:
			raise ValueError("max_size must be >= 1")
		self.name = name
		self.max_size = max_size
		self.ttl = ttl
		self.policy = EvictionPolicy(policy)
		self._clock = clock
		self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
		self._stats = CacheStats(max_size=max_size)
		self._lock = threading.RLock()
		# Computations in progress, shared by concurrent misses on the same key
		self._pending: dict[str, asyncio.Future] = {}

	def get(self, key: str, default: Any = None) -> Any:
		"""Get a live value, or default."""
		with self._lock:
			entry = self._entries.get(key)
			if entry is None:
				self._stats.misses += 1
				return default

			if entry.is_expired(self._clock()):
				del self._entries[key]
				self._stats.expirations += 1
				self._stats.misses += 1
				return default

			if self.policy == EvictionPolicy.LRU:
				self._entries.move_to_end(key)
			self._stats.hits += 1
			return entry.value

	def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
		"""Insert or replace a value, evicting as needed to stay within max_size."""
		with self._lock:
			now = self._clock()
			lifetime = self.ttl if ttl is None else ttl
			if key in self._entries:
				del self._entries[key]
			self._entries[key] = CacheEntry(key=key, value=value, created_at=now, expires_at=now + lifetime)
			self._stats.sets += 1

			while len(self._entries) > self.max_size:
				evicted, _ = self._entries.popitem(last=False)
				self._stats.evictions += 1
				logger.debug(f"Cache {self.name}: evicted {evicted}")

	def delete(self, key: str) -> bool:
		with self._lock:
			return self._entries.pop(key, None) is not None

	def clear(self) -> None:
		with self._lock:
			self._entries.clear()

	def purge_expired(self) -> int:
		"""Drop every expired entry. Returns how many were removed."""
		with self._lock:
			now = self._clock()
			expired = [k for k, e in self._entries.items() if e.is_expired(now)]
			for key in expired:
				del self._entries[key]
			self._stats.expirations += len(expired)
			return len(expired)

	def stats(self) -> CacheStats:
		with self._lock:
			return CacheStats(
				size=len(self._entries),
				max_size=self.max_size,
				hits=self._stats.hits,
				misses=self._stats.misses,
				sets=self._stats.sets,
				evictions=self._stats.evictions,
				expirations=self._stats.expirations,
			)

	async def get_or_compute(
		self,
		key: str,
		compute: Callable[[], Awaitable[Any]],
		ttl: Optional[float] = None,
	) -> Any:
		"""
		Cache-aside: return the cached value or await compute() and store it.

		Concurrent misses on one key share a single compute() call; its
		error is raised in every waiter.
		"""
		sentinel = object()
		while True:
			value = self.get(key, sentinel)
			if value is not sentinel:
				return value
			pending = self._pending.get(key)
			if pending is None:
				break
			try:
				return await asyncio.shield(pending)
			except asyncio.CancelledError:
				if not pending.cancelled():
					raise
				# The computing caller was cancelled; compute again

		future = asyncio.get_running_loop().create_future()
		self._pending[key] = future
		try:
			value = await compute()
		except asyncio.CancelledError:
			future.cancel()
			raise
		except Exception as e:
			future.set_exception(e)
			# Retrieved here so a miss with no waiters does not warn
			future.exception()
			raise
		finally:
			self._pending.pop(key, None)

		self.set(key, value, ttl=ttl)
		future.set_result(value)
		return value

	def __len__(self) -> int:
		with self._lock:
			return len(self._entries)

	def __contains__(self, key: str) -> bool:
		with self._lock:
			entry = self._entries.get(key)
			return entry is not None and not entry.is_expired(self._clock())


def make_key(*parts: Any) -> str:
	"""Stable cache key from JSON-serializable parts."""
	raw = json.dumps(parts, sort_keys=True, default=str)
	return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class CacheManager:
	"""Holds the named caches used across one runtime."""

	CONVERSATION = "conversation"
	CODE = "code"
	EXECUTION = "execution"

	def __init__(self, settings: Optional[dict[str, CacheSettings]] = None):
		self._caches: dict[str, Cache] = {}
		for name, s in (settings or {}).items():
			self._caches[name] = Cache(name, max_size=s.max_size, ttl=s.ttl, policy=s.policy)
		for name in (self.CONVERSATION, self.CODE, self.EXECUTION):
			self._caches.setdefault(name, Cache(name))

	def get(self, name: str) -> Cache:
		return self._caches[name]

	@property
	def conversation(self) -> Cache:
		return self._caches[self.CONVERSATION]

	@property
	def code(self) -> Cache:
		return self._caches[self.CODE]

	@property
	def execution(self) -> Cache:
		return self._caches[self.EXECUTION]

	def purge_expired(self) -> int:
		return sum(c.purge_expired() for c in self._caches.values())

	def clear(self) -> None:
		for cache in self._caches.values():
			cache.clear()

	def stats(self) -> dict[str, dict]:
		return {name: c.stats().to_dict() for name, c in self._caches.items()}
