"""
Blob storage abstraction for permit attachments and closure artifacts.

v0: file:// (local filesystem) and memory:// (tests, single process)

Objects are addressed by name, e.g. ``WP-1001/closure/certificate.json``.
Permits store the name; ``put_object`` returns a URL for display only.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Tuple
from urllib.parse import urlparse

from ..errors import CollaboratorFailure, NotFound

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


def clean_segment(value: str) -> str:
    """Reduce one path segment to a safe file name."""
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", value.strip())
    cleaned = cleaned.strip(".")
    return cleaned or "object"


def normalize_name(name: str) -> str:
    """Clean every segment of an object name; no traversal, no empty parts."""
    segments = [clean_segment(part) for part in name.split("/") if part.strip()]
    if not segments:
        raise ValueError("Object name must not be empty")
    return "/".join(segments)


class BlobStore(ABC):
    """Abstract base class for blob storage."""

    @abstractmethod
    def put_object(
        self, name: str, content: bytes, mime_type: str = DEFAULT_MIME_TYPE
    ) -> str:
        """Store ``content`` under ``name`` and return its URL."""
        pass

    @abstractmethod
    def get_object(self, name: str) -> bytes:
        """Return the bytes stored under ``name``."""
        pass

    @abstractmethod
    def delete_object(self, name: str) -> bool:
        """Delete ``name``; False if it did not exist."""
        pass

    @abstractmethod
    def get_uri(self) -> str:
        """Get the base URI of this store."""
        pass


class FileBlobStore(BlobStore):
    """Local filesystem blob store (file:// URIs).

    Structure:
        {root}/
        ├── WP-1001/attachment/site-plan.pdf
        ├── WP-1001/attachment/site-plan.pdf.meta.json
        └── WP-1001/closure/certificate.json
    """

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, name: str) -> Path:
        return self.root / normalize_name(name)

    @staticmethod
    def _meta_path(path: Path) -> Path:
        return path.with_name(path.name + ".meta.json")

    def put_object(
        self, name: str, content: bytes, mime_type: str = DEFAULT_MIME_TYPE
    ) -> str:
        path = self._path(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
            self._meta_path(path).write_text(
                json.dumps(
                    {
                        "mime_type": mime_type,
                        "size": len(content),
                        "created_at": datetime.now(timezone.utc).isoformat(),
                    },
                    indent=2,
                ),
                encoding="utf-8",
            )
        except OSError as exc:
            logger.error("Failed to write blob %s: %s", name, exc)
            raise CollaboratorFailure(
                f"Blob store could not write {name}", collaborator="blob"
            ) from exc
        logger.info("Stored blob %s (%d bytes)", name, len(content))
        return path.resolve().as_uri()

    def get_object(self, name: str) -> bytes:
        path = self._path(name)
        if not path.is_file():
            raise NotFound(f"Blob {name} not found")
        try:
            return path.read_bytes()
        except OSError as exc:
            raise CollaboratorFailure(
                f"Blob store could not read {name}", collaborator="blob"
            ) from exc

    def get_mime_type(self, name: str) -> str:
        """Mime type recorded when ``name`` was stored."""
        meta = self._meta_path(self._path(name))
        if not meta.is_file():
            return DEFAULT_MIME_TYPE
        return json.loads(meta.read_text(encoding="utf-8")).get(
            "mime_type", DEFAULT_MIME_TYPE
        )

    def delete_object(self, name: str) -> bool:
        path = self._path(name)
        if not path.exists():
            return False
        try:
            path.unlink()
            meta = self._meta_path(path)
            if meta.exists():
                meta.unlink()
        except OSError as exc:
            raise CollaboratorFailure(
                f"Blob store could not delete {name}", collaborator="blob"
            ) from exc
        logger.info("Deleted blob %s", name)
        return True

    def get_uri(self) -> str:
        return self.root.resolve().as_uri()


class MemoryBlobStore(BlobStore):
    """In-process blob store (memory:// URIs). Contents die with the process."""

    def __init__(self, bucket: str = "permits"):
        self.bucket = bucket
        self._objects: Dict[str, Tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    def put_object(
        self, name: str, content: bytes, mime_type: str = DEFAULT_MIME_TYPE
    ) -> str:
        key = normalize_name(name)
        with self._lock:
            self._objects[key] = (bytes(content), mime_type)
        return f"memory://{self.bucket}/{key}"

    def get_object(self, name: str) -> bytes:
        key = normalize_name(name)
        with self._lock:
            if key not in self._objects:
                raise NotFound(f"Blob {name} not found")
            return self._objects[key][0]

    def get_mime_type(self, name: str) -> str:
        """Mime type recorded when ``name`` was stored."""
        with self._lock:
            entry = self._objects.get(normalize_name(name))
        return entry[1] if entry else DEFAULT_MIME_TYPE

    def delete_object(self, name: str) -> bool:
        with self._lock:
            return self._objects.pop(normalize_name(name), None) is not None

    def names(self):
        """Names of every stored object."""
        with self._lock:
            return sorted(self._objects)

    def get_uri(self) -> str:
        return f"memory://{self.bucket}"


def create_blob_store(uri: str) -> BlobStore:
    """Factory function to create the BlobStore for a URI.

    Args:
        uri: Store URI (e.g., "file:///var/lib/permits", "file://./permit_blobs",
            "memory://permits")

    Returns:
        BlobStore instance for the given URI scheme

    Raises:
        ValueError: If URI scheme is not supported
    """
    parsed = urlparse(uri)

    if parsed.scheme == "file":
        # file://./blobs is relative: urlparse puts "." in netloc
        if parsed.netloc and parsed.netloc != "localhost":
            root = Path(parsed.netloc + parsed.path)
        else:
            root = Path(parsed.path)
        return FileBlobStore(root)

    elif parsed.scheme == "memory":
        return MemoryBlobStore(parsed.netloc or "permits")

    raise ValueError(f"Unsupported blob store URI scheme: {parsed.scheme!r}")
