"""
Blob storage for permit attachments and closure artifacts.
"""

from .blob import (
    BlobStore,
    FileBlobStore,
    MemoryBlobStore,
    create_blob_store,
    normalize_name,
)

__all__ = [
    "BlobStore",
    "FileBlobStore",
    "MemoryBlobStore",
    "create_blob_store",
    "normalize_name",
]
