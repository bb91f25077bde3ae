import hashlib
from pathlib import Path

DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024
DIGEST_HEX_LENGTH = 64


def hash_file(path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Full-content SHA-256 of ``path`` as a 64-char hex digest."""
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            hasher.update(chunk)
    return hasher.hexdigest()
