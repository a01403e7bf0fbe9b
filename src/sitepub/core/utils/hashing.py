"""SHA-256 content hashing for build manifests and artifact ids"""

import hashlib
from pathlib import Path


def sha256(content: str) -> str:
    """Return hex-encoded SHA-256 hash of text content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path, chunk_size: int = 1 << 16) -> str:
    """Hash a file without reading it into memory at once."""
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()
