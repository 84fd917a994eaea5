from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sized
from dataclasses import dataclass
import logging
from time import monotonic
from typing import Any, Generic, TypeVar

CacheValue = TypeVar("CacheValue")
QueryFn = Callable[[], Awaitable[CacheValue | None]]
ConnectFn = Callable[[], Awaitable[None]]

DEFAULT_TTL_MS = 10_000

logger = logging.getLogger(__name__)

_NO_RESULT = object()


@dataclass(slots=True)
class CacheEntry(Generic[CacheValue]):
	key: str
	value: CacheValue
	last_fetched_at: float


@dataclass(slots=True)
class CacheStats:
	hits: int = 0
	stale_hits: int = 0
	misses: int = 0
	refreshes: int = 0
	failures: int = 0
	size: int = 0
	in_flight: int = 0


def is_usable(value: object) -> bool:
	"""Return whether a query result may replace cached data."""
	if value is None:
		return False
	if isinstance(value, Sized) and not isinstance(value, (bytes, bytearray)):
		return len(value) > 0
	return True


class QueryCache:
	"""Memoize async reads per key, serving stale data while one refresh runs.

	The cache never raises for a failing query: errors are logged and the last
	cached value (or the caller's fallback) is returned instead. Loads are
	tracked per key so a query never runs twice concurrently for the same key.
	All bookkeeping happens between suspension points, so an instance must be
	used from a single event loop.
	"""

	def __init__(
		self,
		now: Callable[[], float] | None = None,
		connect: ConnectFn | None = None,
		timeout_seconds: float | None = None,
	) -> None:
		self._entries: dict[str, CacheEntry[Any]] = {}
		self._in_flight: dict[str, asyncio.Task[Any]] = {}
		self._tasks: set[asyncio.Task[Any]] = set()
		self._now = now or monotonic
		self._connect = connect
		self._timeout_seconds = timeout_seconds or None
		self._stats = CacheStats()
		self._generation = 0

	async def get(
		self,
		key: str,
		query_fn: QueryFn[CacheValue],
		ttl_ms: float = DEFAULT_TTL_MS,
		fallback: CacheValue | None = None,
	) -> CacheValue | None:
		if not key:
			raise ValueError("Cache key cannot be empty.")

		entry = self._entries.get(key)
		if entry is not None:
			if (self._now() - entry.last_fetched_at) * 1000 < ttl_ms:
				self._stats.hits += 1
				return entry.value

			self._stats.stale_hits += 1
			if key not in self._in_flight:
				logger.debug("Refreshing stale cache entry %s in the background.", key)
				self._stats.refreshes += 1
				self._start_load(key, query_fn)
			return entry.value

		self._stats.misses += 1
		task = self._in_flight.get(key) or self._start_load(key, query_fn)
		try:
			result = await asyncio.shield(task)
		except asyncio.CancelledError:
			if not task.cancelled():
				raise
			result = _NO_RESULT

		if result is not _NO_RESULT:
			return result

		entry = self._entries.get(key)
		if entry is not None:
			return entry.value
		return fallback

	def peek(self, key: str) -> Any | None:
		entry = self._entries.get(key)
		if entry is None:
			return None
		return entry.value

	def is_refreshing(self, key: str) -> bool:
		return key in self._in_flight

	def stats(self) -> CacheStats:
		return CacheStats(
			hits=self._stats.hits,
			stale_hits=self._stats.stale_hits,
			misses=self._stats.misses,
			refreshes=self._stats.refreshes,
			failures=self._stats.failures,
			size=len(self._entries),
			in_flight=len(self._in_flight),
		)

	def clear(self) -> None:
		"""Drop every entry; loads started before the call will not store results."""
		self._generation += 1
		self._in_flight.clear()
		self._entries.clear()

	async def aclose(self) -> None:
		"""Cancel outstanding loads and drop every cached entry."""
		tasks = list(self._tasks)
		for task in tasks:
			task.cancel()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)
		self._tasks.clear()
		self._in_flight.clear()
		self._entries.clear()

	def _start_load(
		self,
		key: str,
		query_fn: QueryFn[Any],
	) -> asyncio.Task[Any]:
		task = asyncio.get_running_loop().create_task(self._load(key, query_fn, self._generation))
		self._in_flight[key] = task
		self._tasks.add(task)

		def _release(finished: asyncio.Task[Any]) -> None:
			self._tasks.discard(finished)
			if self._in_flight.get(key) is finished:
				del self._in_flight[key]

		task.add_done_callback(_release)
		return task

	async def _load(self, key: str, query_fn: QueryFn[Any], generation: int) -> Any:
		try:
			if self._connect is not None:
				await self._connect()
			if self._timeout_seconds is None:
				value = await query_fn()
			else:
				value = await asyncio.wait_for(query_fn(), timeout=self._timeout_seconds)
		except asyncio.TimeoutError:
			self._stats.failures += 1
			logger.warning(
				"Query for %s timed out after %.1f seconds.",
				key,
				self._timeout_seconds,
			)
			return _NO_RESULT
		except Exception:
			self._stats.failures += 1
			logger.exception("Error fetching %s.", key)
			return _NO_RESULT

		if not is_usable(value):
			logger.debug("Query for %s returned no data; keeping cached value.", key)
			return _NO_RESULT

		if generation != self._generation:
			logger.debug("Discarding result for %s loaded before the cache was cleared.", key)
			return value

		self._entries[key] = CacheEntry(key=key, value=value, last_fetched_at=self._now())
		return value
