"""Filesystem blob store for rendered images and font assets.

Blobs are addressed by slash-separated keys (``ogp/abc1234.png``). Each
blob is written next to a small JSON sidecar carrying its content type,
and is reachable publicly at ``<public base URL>/<key>``.
"""
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from quotelinks.config import BLOB_DIR, PUBLIC_IMAGE_BASE_URL

logger = logging.getLogger("quotelinks.blobstore")


class BlobKeyError(ValueError):
    """Raised for keys that would escape the store root."""


@dataclass(frozen=True)
class StoredBlob:
    data: bytes
    content_type: str


class LocalBlobStore:
    def __init__(self, root: Path, public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        parts = PurePosixPath(key).parts
        if not parts or key.startswith("/") or any(p in ("..", ".") for p in parts):
            raise BlobKeyError(f"Invalid blob key: {key!r}")
        return self.root.joinpath(*parts)

    def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write to a temp file first so readers never see a partial blob
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        path.with_name(path.name + ".json").write_text(
            json.dumps({"content_type": content_type, "size": len(data)})
        )
        logger.info("Stored blob %s (%d bytes, %s)", key, len(data), content_type)

    def get(self, key: str) -> StoredBlob | None:
        path = self._path(key)
        if not path.is_file():
            return None
        meta = path.with_name(path.name + ".json")
        content_type = "application/octet-stream"
        if meta.is_file():
            content_type = json.loads(meta.read_text()).get("content_type", content_type)
        return StoredBlob(data=path.read_bytes(), content_type=content_type)

    def public_url(self, key: str) -> str:
        self._path(key)
        return f"{self.public_base_url}/{key}"


_default_store: LocalBlobStore | None = None
_default_store_lock = threading.Lock()

def get_blob_store() -> LocalBlobStore:
    global _default_store
    if _default_store is None:
        with _default_store_lock:
            if _default_store is None:
                _default_store = LocalBlobStore(BLOB_DIR, PUBLIC_IMAGE_BASE_URL)
    return _default_store
