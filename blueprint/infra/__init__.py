# -----------------------------------------------------------------------------
# INFRASTRUCTURE LAYER
# -----------------------------------------------------------------------------
# Contains low-level storage wrappers:
# - BlobClient: Azure Blob Storage REST client (requests)
# - Local/Blob asset and output stores used by the renderer
# -----------------------------------------------------------------------------

from .blob_client import BlobClient, BlobError
from .storage import (
    AssetNotFound,
    AssetStore,
    BlobAssetStore,
    BlobOutputStore,
    LocalAssetStore,
    LocalOutputStore,
    OutputStore,
    PackNotFound,
    StorageError,
    StoreUnavailable,
)

__all__ = [
    "AssetNotFound",
    "AssetStore",
    "BlobAssetStore",
    "BlobClient",
    "BlobError",
    "BlobOutputStore",
    "LocalAssetStore",
    "LocalOutputStore",
    "OutputStore",
    "PackNotFound",
    "StorageError",
    "StoreUnavailable",
]
