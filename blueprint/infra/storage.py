# -----------------------------------------------------------------------------
# STORAGE - ASSET & OUTPUT STORES
# -----------------------------------------------------------------------------
# Responsibility: The boundary between the renderer and wherever asset packs
# and rendered outputs live.
#
# Contracts:
# - AssetStore: list a pack's catalog, fetch asset bytes, read asset metadata
# - OutputStore: persist one rendered instance under its run id
#
# Blob implementations use Azure Blob Storage (see blob_client.py).
# Local implementations keep everything on disk. Layout:
#   <asset_root>/packs/<pack_id>/<path>   pack assets
#   <asset_root>/assets/<asset_id>        shared assets
#   <output_root>/<run_id>/<filename>     rendered outputs
#
# Filesystem calls run in a worker thread so the event loop keeps serving
# other runs.
# -----------------------------------------------------------------------------

import asyncio
import json
from pathlib import Path, PurePosixPath
from typing import Protocol

from rich.console import Console

from blueprint.domain.models import AssetLocator
from blueprint.infra.blob_client import BlobClient, BlobError, BlobNotFound, ContainerNotFound

console = Console()

# Optional sidecar holding asset metadata, e.g. {"file_name": "hero.png"}
METADATA_SUFFIX = ".meta.json"


class StorageError(Exception):
    """Base class for asset/output storage failures."""

    pass


class StoreUnavailable(StorageError):
    """Raised when the backing store cannot be reached or rejects a request."""

    pass


class PackNotFound(StorageError):
    """Raised when a pack id is not present in the catalog."""

    def __init__(self, pack_id: str) -> None:
        super().__init__(f"Pack not found: {pack_id}")
        self.pack_id = pack_id


class AssetNotFound(StorageError):
    """Raised when a locator does not address a stored asset."""

    def __init__(self, locator: AssetLocator) -> None:
        super().__init__(f"Asset not found: {locator}")
        self.locator = locator


class AssetStore(Protocol):
    """Read side of the asset catalog."""

    async def list_assets(self, pack_id: str) -> list[str]:
        """Return every asset path of a pack, in stable catalog order."""
        ...

    async def get(self, locator: AssetLocator) -> bytes:
        """Return the raw bytes of one asset."""
        ...

    async def metadata(self, locator: AssetLocator) -> dict[str, str]:
        """Return the stored metadata of one asset (may be empty)."""
        ...


class OutputStore(Protocol):
    """Write side for rendered instances."""

    async def put(self, run_id: str, filename: str, data: bytes) -> None:
        ...


def _safe_join(root: Path, relative: str) -> Path:
    """Join a store-relative path onto root, refusing to escape it."""
    parts = PurePosixPath(relative).parts
    if not parts or any(part in ("..", "") for part in parts) or PurePosixPath(relative).is_absolute():
        raise StorageError(f"Invalid store path: {relative!r}")
    return root.joinpath(*parts)


class LocalAssetStore:
    """AssetStore backed by a directory tree."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)
        self._packs = self._root / "packs"
        self._shared = self._root / "assets"

    def _locate(self, locator: AssetLocator) -> Path:
        if locator.pack_id is None:
            return _safe_join(self._shared, locator.path)
        return _safe_join(_safe_join(self._packs, locator.pack_id), locator.path)

    def _list_sync(self, pack_id: str) -> list[str]:
        pack_dir = _safe_join(self._packs, pack_id)
        if not pack_dir.is_dir():
            raise PackNotFound(pack_id)
        try:
            return sorted(
                path.relative_to(pack_dir).as_posix()
                for path in pack_dir.rglob("*")
                if path.is_file() and not path.name.endswith(METADATA_SUFFIX)
            )
        except OSError as e:
            raise StoreUnavailable(f"Failed to list pack {pack_id}: {e}") from e

    def _get_sync(self, locator: AssetLocator) -> bytes:
        path = self._locate(locator)
        if not path.is_file():
            raise AssetNotFound(locator)
        try:
            return path.read_bytes()
        except OSError as e:
            raise StoreUnavailable(f"Failed to read {locator}: {e}") from e

    def _metadata_sync(self, locator: AssetLocator) -> dict[str, str]:
        path = self._locate(locator)
        sidecar = path.with_name(path.name + METADATA_SUFFIX)
        if sidecar.is_file():
            try:
                data = json.loads(sidecar.read_text())
            except (OSError, json.JSONDecodeError) as e:
                raise StoreUnavailable(f"Failed to read metadata for {locator}: {e}") from e
            return {str(k): str(v) for k, v in data.items()}
        if not path.is_file():
            raise AssetNotFound(locator)
        return {"file_name": path.name}

    async def list_assets(self, pack_id: str) -> list[str]:
        return await asyncio.to_thread(self._list_sync, pack_id)

    async def get(self, locator: AssetLocator) -> bytes:
        return await asyncio.to_thread(self._get_sync, locator)

    async def metadata(self, locator: AssetLocator) -> dict[str, str]:
        return await asyncio.to_thread(self._metadata_sync, locator)


class LocalOutputStore:
    """OutputStore writing <root>/<run_id>/<filename>."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)

    def _put_sync(self, run_id: str, filename: str, data: bytes) -> Path:
        path = _safe_join(_safe_join(self._root, run_id), filename)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise StoreUnavailable(f"Failed to write {run_id}/{filename}: {e}") from e
        return path

    async def put(self, run_id: str, filename: str, data: bytes) -> None:
        path = await asyncio.to_thread(self._put_sync, run_id, filename, data)
        console.print(f"[dim][STORAGE] Wrote {path} ({len(data)} bytes)[/dim]")


# -----------------------------------------------------------------------------
# BLOB-BACKED STORES
# -----------------------------------------------------------------------------

SHARED_ASSET_CONTAINER = "assets"
OUTPUT_CONTAINER = "template-output"


def pack_container(pack_id: str) -> str:
    return f"pack-{pack_id}"


class BlobAssetStore:
    """AssetStore over Azure Blob Storage (one container per pack)."""

    def __init__(self, client: BlobClient) -> None:
        self._client = client

    def _address(self, locator: AssetLocator) -> tuple[str, str]:
        if locator.pack_id is None:
            return SHARED_ASSET_CONTAINER, locator.path
        return pack_container(locator.pack_id), locator.path

    async def list_assets(self, pack_id: str) -> list[str]:
        try:
            return await asyncio.to_thread(self._client.list_blobs, pack_container(pack_id))
        except ContainerNotFound as e:
            raise PackNotFound(pack_id) from e
        except BlobError as e:
            raise StoreUnavailable(str(e)) from e

    async def get(self, locator: AssetLocator) -> bytes:
        container, blob = self._address(locator)
        try:
            return await asyncio.to_thread(self._client.get_blob, container, blob)
        except (BlobNotFound, ContainerNotFound) as e:
            raise AssetNotFound(locator) from e
        except BlobError as e:
            raise StoreUnavailable(str(e)) from e

    async def metadata(self, locator: AssetLocator) -> dict[str, str]:
        container, blob = self._address(locator)
        try:
            return await asyncio.to_thread(self._client.get_metadata, container, blob)
        except (BlobNotFound, ContainerNotFound) as e:
            raise AssetNotFound(locator) from e
        except BlobError as e:
            raise StoreUnavailable(str(e)) from e


class BlobOutputStore:
    """OutputStore writing template-output/<run_id>/<filename>."""

    def __init__(self, client: BlobClient, container: str = OUTPUT_CONTAINER) -> None:
        self._client = client
        self._container = container

    async def put(self, run_id: str, filename: str, data: bytes) -> None:
        try:
            await asyncio.to_thread(
                self._client.put_blob, self._container, f"{run_id}/{filename}", data
            )
        except BlobError as e:
            raise StoreUnavailable(str(e)) from e
