"""Filesystem helpers: atomic writes and relative path safety"""

import os
import tempfile
from pathlib import Path, PurePosixPath


def write_atomic(path: Path, data: bytes) -> None:
    """Write bytes to path via a temp file + rename so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def is_safe_relative(path: str) -> bool:
    """True for non-empty relative POSIX paths that stay inside their root."""
    p = PurePosixPath(path)
    return bool(path) and not p.is_absolute() and ".." not in p.parts and "\\" not in path
