# =============================================================================
# BLUEPRINT STORAGE TESTS
# =============================================================================
# Tests for the local and blob-backed asset/output stores.
# =============================================================================

import json
from unittest.mock import MagicMock

import pytest

from blueprint.domain.models import AssetLocator
from blueprint.infra.blob_client import BlobError, BlobNotFound, ContainerNotFound
from blueprint.infra.storage import (
    AssetNotFound,
    BlobAssetStore,
    BlobOutputStore,
    LocalAssetStore,
    LocalOutputStore,
    PackNotFound,
    StorageError,
    StoreUnavailable,
    pack_container,
)


@pytest.fixture
def asset_root(tmp_path, make_png):
    pack = tmp_path / "packs" / "packA"
    (pack / "sub").mkdir(parents=True)
    (pack / "b.jpg").write_bytes(b"jpeg")
    (pack / "a.png").write_bytes(make_png())
    (pack / "sub" / "c.png").write_bytes(make_png())
    (pack / "a.png.meta.json").write_text(json.dumps({"file_name": "Hero.png", "order": 1}))
    shared = tmp_path / "assets"
    shared.mkdir()
    (shared / "hero-01").write_bytes(b"shared")
    return tmp_path


class TestLocalAssetStore:
    """Test the filesystem asset store."""

    @pytest.mark.asyncio
    async def test_list_assets_sorted_without_sidecars(self, asset_root):
        """The catalog lists files in sorted order, skipping metadata sidecars."""
        store = LocalAssetStore(asset_root)
        assert await store.list_assets("packA") == ["a.png", "b.jpg", "sub/c.png"]

    @pytest.mark.asyncio
    async def test_unknown_pack(self, asset_root):
        """Listing a missing pack raises PackNotFound."""
        with pytest.raises(PackNotFound):
            await LocalAssetStore(asset_root).list_assets("nope")

    @pytest.mark.asyncio
    async def test_get_pack_and_shared_assets(self, asset_root):
        """Pack assets and shared assets are both readable."""
        store = LocalAssetStore(asset_root)
        assert await store.get(AssetLocator(pack_id="packA", path="b.jpg")) == b"jpeg"
        assert await store.get(AssetLocator(path="hero-01")) == b"shared"

    @pytest.mark.asyncio
    async def test_missing_asset(self, asset_root):
        """Missing assets raise AssetNotFound."""
        with pytest.raises(AssetNotFound):
            await LocalAssetStore(asset_root).get(AssetLocator(pack_id="packA", path="zzz.png"))

    @pytest.mark.asyncio
    async def test_metadata_sidecar(self, asset_root):
        """Metadata comes from the sidecar file, values as strings."""
        store = LocalAssetStore(asset_root)
        metadata = await store.metadata(AssetLocator(pack_id="packA", path="a.png"))
        assert metadata == {"file_name": "Hero.png", "order": "1"}

    @pytest.mark.asyncio
    async def test_metadata_default_file_name(self, asset_root):
        """Without a sidecar the file name is reported."""
        store = LocalAssetStore(asset_root)
        metadata = await store.metadata(AssetLocator(pack_id="packA", path="sub/c.png"))
        assert metadata == {"file_name": "c.png"}

    @pytest.mark.asyncio
    async def test_path_traversal_rejected(self, asset_root):
        """Locators cannot escape the asset root."""
        with pytest.raises(StorageError):
            await LocalAssetStore(asset_root).get(AssetLocator(pack_id="packA", path="../../secret"))


class TestLocalOutputStore:
    """Test the filesystem output store."""

    @pytest.mark.asyncio
    async def test_put_writes_under_run(self, tmp_path):
        """Outputs land in <root>/<run_id>/<filename>."""
        store = LocalOutputStore(tmp_path)
        await store.put("run-1", "hero.png", b"png")
        assert (tmp_path / "run-1" / "hero.png").read_bytes() == b"png"

    @pytest.mark.asyncio
    async def test_put_overwrites(self, tmp_path):
        """Writing the same name twice keeps the latest bytes."""
        store = LocalOutputStore(tmp_path)
        await store.put("run-1", "hero.png", b"one")
        await store.put("run-1", "hero.png", b"two")
        assert (tmp_path / "run-1" / "hero.png").read_bytes() == b"two"


class TestBlobStores:
    """Test the blob-backed stores against a mocked client."""

    def test_pack_container_name(self):
        """Packs live in pack-<id> containers."""
        assert pack_container("42") == "pack-42"

    @pytest.mark.asyncio
    async def test_list_assets(self):
        """Listing reads the pack container."""
        client = MagicMock()
        client.list_blobs.return_value = ["a.png", "b.png"]

        assert await BlobAssetStore(client).list_assets("42") == ["a.png", "b.png"]
        client.list_blobs.assert_called_once_with("pack-42")

    @pytest.mark.asyncio
    async def test_missing_container_is_unknown_pack(self):
        """A missing pack container raises PackNotFound."""
        client = MagicMock()
        client.list_blobs.side_effect = ContainerNotFound("pack-42")

        with pytest.raises(PackNotFound):
            await BlobAssetStore(client).list_assets("42")

    @pytest.mark.asyncio
    async def test_shared_assets_container(self):
        """Assets without a pack come from the shared container."""
        client = MagicMock()
        client.get_blob.return_value = b"bytes"

        await BlobAssetStore(client).get(AssetLocator(path="hero-01"))
        client.get_blob.assert_called_once_with("assets", "hero-01")

    @pytest.mark.asyncio
    async def test_missing_blob(self):
        """A missing blob raises AssetNotFound."""
        client = MagicMock()
        client.get_metadata.side_effect = BlobNotFound("x")

        with pytest.raises(AssetNotFound):
            await BlobAssetStore(client).metadata(AssetLocator(pack_id="42", path="x.png"))

    @pytest.mark.asyncio
    async def test_service_errors(self):
        """Other blob failures mean the store is unavailable."""
        client = MagicMock()
        client.get_blob.side_effect = BlobError("503")

        with pytest.raises(StoreUnavailable):
            await BlobAssetStore(client).get(AssetLocator(pack_id="42", path="x.png"))

    @pytest.mark.asyncio
    async def test_output_put(self):
        """Outputs are uploaded as template-output/<run_id>/<filename>."""
        client = MagicMock()
        await BlobOutputStore(client).put("run-1", "hero.png", b"png")
        client.put_blob.assert_called_once_with("template-output", "run-1/hero.png", b"png")
