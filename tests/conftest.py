"""
Pytest configuration and fixtures for Blueprint tests.
"""

import asyncio
import io
import os
import sys
from collections import Counter
from pathlib import Path

import pytest
from PIL import Image

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Set test environment variables
os.environ.setdefault("BLUEPRINT_STORAGE", "local")
os.environ.setdefault("BLUEPRINT_RUN_STORE", "memory")
os.environ.setdefault("DB_HOST", "localhost")
os.environ.setdefault("DB_PORT", "5432")
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("DB_NAME", "test_db")

from blueprint.domain.models import AssetLocator
from blueprint.infra.storage import AssetNotFound, PackNotFound, StoreUnavailable


def png_bytes(size=(4, 4), color=(255, 0, 0, 255)) -> bytes:
    """Encode a solid RGBA image as PNG."""
    buffer = io.BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeAssetStore:
    """
    In-memory AssetStore.

    Packs keep insertion order as catalog order. Every get() is counted so
    tests can assert how often an asset was fetched.
    """

    def __init__(self):
        self.packs: dict[str, dict[str, bytes]] = {}
        self.shared: dict[str, bytes] = {}
        self.meta: dict[AssetLocator, dict[str, str]] = {}
        self.broken: set[AssetLocator] = set()
        self.fetches: Counter = Counter()
        self.fetch_delay = 0.0

    def add_pack(self, pack_id: str, assets: dict[str, bytes]) -> None:
        self.packs[pack_id] = dict(assets)

    async def list_assets(self, pack_id: str) -> list[str]:
        if pack_id not in self.packs:
            raise PackNotFound(pack_id)
        return list(self.packs[pack_id])

    async def get(self, locator: AssetLocator) -> bytes:
        self.fetches[locator] += 1
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        if locator in self.broken:
            raise StoreUnavailable(f"Simulated outage for {locator}")
        source = self.shared if locator.pack_id is None else self.packs.get(locator.pack_id, {})
        if locator.path not in source:
            raise AssetNotFound(locator)
        return source[locator.path]

    async def metadata(self, locator: AssetLocator) -> dict[str, str]:
        return dict(self.meta.get(locator, {}))


class RecordingOutputStore:
    """In-memory OutputStore remembering every put in order."""

    def __init__(self):
        self.files: dict[tuple[str, str], bytes] = {}
        self.order: list[str] = []
        self.error: Exception | None = None

    async def put(self, run_id: str, filename: str, data: bytes) -> None:
        if self.error is not None:
            raise self.error
        self.files[(run_id, filename)] = data
        self.order.append(filename)


@pytest.fixture
def make_png():
    """Factory for PNG-encoded solid images."""
    return png_bytes


@pytest.fixture
def asset_store():
    """Empty in-memory asset store."""
    return FakeAssetStore()


@pytest.fixture
def output_store():
    """Recording output store."""
    return RecordingOutputStore()


@pytest.fixture
def two_by_three(asset_store):
    """
    Asset store with pack 'backs' (2 backgrounds) and pack 'fronts'
    (3 foregrounds plus a non-PNG file).
    """
    asset_store.add_pack(
        "backs",
        {
            "b1.png": png_bytes((16, 16), (255, 0, 0, 255)),
            "b2.png": png_bytes((16, 16), (0, 255, 0, 255)),
        },
    )
    asset_store.add_pack(
        "fronts",
        {
            "f1.png": png_bytes((4, 4), (0, 0, 255, 255)),
            "f2.png": png_bytes((4, 4), (255, 255, 0, 255)),
            "notes.txt": b"not an image",
            "f3.png": png_bytes((4, 4), (0, 255, 255, 255)),
        },
    )
    return asset_store
