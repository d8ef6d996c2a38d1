# -----------------------------------------------------------------------------
# THE IMAGE CACHE - SINGLE-FLIGHT LRU
# -----------------------------------------------------------------------------
# Responsibility: Map an asset locator to its decoded RGBA raster so a batch
# of hundreds of instances fetches and decodes each asset once.
#
# Guarantees:
# - Single-flight: concurrent get() calls for one locator share one load
# - LRU eviction bounded by entry count, never touching in-flight loads
# - Failed loads are handed to every waiting caller and then forgotten,
#   so the next get() retries
#
# One cache per run; it is dropped when the run ends.
# -----------------------------------------------------------------------------

import asyncio
import io
import os
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from PIL import Image
from rich.console import Console

from blueprint.domain.models import AssetLocator

console = Console()

# Decoded rasters kept per run
POOL_SIZE = int(os.getenv("BLUEPRINT_CACHE_SIZE", "20"))

Fetcher = Callable[[AssetLocator], Awaitable[bytes]]
Decoder = Callable[[bytes], Image.Image]


class LoadError(Exception):
    """Raised when an asset cannot be fetched or decoded."""

    def __init__(self, message: str, locator: AssetLocator) -> None:
        super().__init__(message)
        self.locator = locator


def decode_rgba(data: bytes) -> Image.Image:
    """Detect the container format, decode, and convert to 8-bit RGBA."""
    with Image.open(io.BytesIO(data)) as image:
        image.load()
        return image.convert("RGBA")


@dataclass
class CacheStats:
    """Counters for diagnostics."""

    hits: int = 0
    misses: int = 0
    loads: int = 0
    failures: int = 0
    evictions: int = 0


class ImageCache:
    """
    Asynchronous loading cache: AssetLocator -> RGBA PIL image.

    Returned images are shared between callers and must be treated as
    read-only.
    """

    def __init__(
        self,
        fetch: Fetcher,
        decode: Decoder = decode_rgba,
        capacity: int = POOL_SIZE,
    ) -> None:
        """
        Initialize the cache.

        Args:
            fetch: Coroutine function returning the raw bytes of a locator.
            decode: Turns raw bytes into an RGBA image. Runs in a worker thread.
            capacity: Maximum number of decoded images kept.
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._fetch = fetch
        self._decode = decode
        self._capacity = capacity
        self._entries: OrderedDict[AssetLocator, Image.Image] = OrderedDict()
        self._inflight: dict[AssetLocator, asyncio.Task] = {}
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, locator: AssetLocator) -> bool:
        return locator in self._entries

    @property
    def capacity(self) -> int:
        return self._capacity

    async def get(self, locator: AssetLocator) -> Image.Image:
        """
        Return the decoded image for a locator, loading it at most once.

        Raises:
            LoadError: If fetching or decoding failed. Every caller waiting on
                the same load receives the same exception instance.
        """
        image = self._entries.get(locator)
        if image is not None:
            self._entries.move_to_end(locator)
            self.stats.hits += 1
            return image

        self.stats.misses += 1
        task = self._inflight.get(locator)
        if task is None:
            task = asyncio.ensure_future(self._load(locator))
            self._inflight[locator] = task
            task.add_done_callback(lambda done, key=locator: self._settle(key, done))

        # A cancelled caller must not cancel the load shared with others
        return await asyncio.shield(task)

    async def _load(self, locator: AssetLocator) -> Image.Image:
        self.stats.loads += 1
        try:
            data = await self._fetch(locator)
        except Exception as e:
            raise LoadError(f"Failed to fetch {locator}: {e}", locator) from e

        try:
            return await asyncio.to_thread(self._decode, data)
        except Exception as e:
            raise LoadError(f"Failed to decode {locator}: {e}", locator) from e

    def _settle(self, locator: AssetLocator, task: asyncio.Task) -> None:
        """Move a finished load out of the in-flight table."""
        self._inflight.pop(locator, None)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.stats.failures += 1
            console.print(f"[yellow][CACHE] {error}[/yellow]")
            return
        self._insert(locator, task.result())

    def _insert(self, locator: AssetLocator, image: Image.Image) -> None:
        self._entries[locator] = image
        self._entries.move_to_end(locator)
        while len(self._entries) > self._capacity:
            evicted, _ = self._entries.popitem(last=False)
            self.stats.evictions += 1
            console.print(f"[dim][CACHE] Evicted {evicted}[/dim]")

    def clear(self) -> None:
        """Drop every decoded entry (in-flight loads are unaffected)."""
        self._entries.clear()
