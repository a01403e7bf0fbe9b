"""Hosting targets: stage immutable releases and atomically switch the live one"""

import logging
import os
import shutil
from pathlib import Path
from typing import Optional, Protocol
from uuid import uuid4

from sitepub.core.models import Artifact
from sitepub.core.package import unpack


logger = logging.getLogger(__name__)


class HostingTarget(Protocol):
    """Where releases live and which one is served at `url`."""
    url: str

    def upload(self, artifact: Artifact) -> str:
        """Stage the artifact as an immutable release; returns the release id."""

    def activate(self, release_id: str) -> None:
        """Make release_id live in one atomic step."""

    def live_release(self) -> Optional[str]: ...

    def has_release(self, release_id: str) -> bool: ...

    def prune(self, keep: set[str]) -> list[str]: ...


class LocalDirectoryTarget:
    """Releases under <root>/releases/<id>; <root>/current is a symlink to the live one.

    A reader that resolves `current` once sees exactly one complete release:
    releases are never modified after upload and the symlink is replaced with
    a single rename.
    """

    def __init__(self, root: Path, url: str):
        self.root = root
        self.url = url
        self.releases = root / "releases"
        self.current = root / "current"

    def upload(self, artifact: Artifact) -> str:
        dest = self.releases / artifact.id
        if dest.is_dir():
            return artifact.id
        tmp = self.releases / f".{artifact.id}.{uuid4().hex}"
        tmp.mkdir(parents=True)
        try:
            for name, data in unpack(artifact.path.read_bytes()):
                path = tmp / name
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(data)
            tmp.rename(dest)
        except OSError:
            shutil.rmtree(tmp, ignore_errors=True)
            if dest.is_dir():  # uploaded concurrently by someone else
                return artifact.id
            raise
        logger.info("Uploaded release %s", artifact.id[:12])
        return artifact.id

    def activate(self, release_id: str) -> None:
        if not self.has_release(release_id):
            raise FileNotFoundError(f"release {release_id} not uploaded")
        link = self.root / f".current.{uuid4().hex}"
        os.symlink(Path("releases") / release_id, link)
        try:
            os.replace(link, self.current)
        except OSError:
            link.unlink(missing_ok=True)
            raise
        logger.info("Activated release %s", release_id[:12])

    def live_release(self) -> Optional[str]:
        if not self.current.is_symlink():
            return None
        return Path(os.readlink(self.current)).name

    def live_root(self) -> Optional[Path]:
        """Resolved directory of the live release; read files relative to this."""
        release = self.live_release()
        return self.releases / release if release else None

    def has_release(self, release_id: str) -> bool:
        return (self.releases / release_id).is_dir()

    def prune(self, keep: set[str]) -> list[str]:
        """Delete releases not in keep. The live release is always kept."""
        if not self.releases.is_dir():
            return []
        keep = keep | {self.live_release()}
        removed = []
        for p in sorted(self.releases.iterdir()):
            if p.is_dir() and not p.name.startswith('.') and p.name not in keep:
                shutil.rmtree(p)
                removed.append(p.name)
        return removed
