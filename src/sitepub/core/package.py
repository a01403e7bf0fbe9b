"""Artifact packaging: deterministic tar.gz named by the hash of its bytes"""

import gzip
import io
import logging
import shutil
import tarfile
from pathlib import Path

from sitepub.core.models import Artifact, FileRecord
from sitepub.core.utils.fs import is_safe_relative, write_atomic
from sitepub.core.utils.hashing import sha256_bytes
from sitepub.exceptions import PackagingError


logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tar.gz"
LATEST_FILE = "LATEST"


def _list_files(root: Path) -> list[tuple[str, Path]]:
    try:
        paths = sorted(p for p in root.rglob('*') if p.is_file())
    except OSError as e:
        raise PackagingError(f"output directory unreadable: {e}", str(root)) from e
    return [(p.relative_to(root).as_posix(), p) for p in paths]


def pack(files: list[tuple[str, bytes]]) -> bytes:
    """Tar+gzip with fixed metadata so equal inputs give equal bytes."""
    buf = io.BytesIO()
    with gzip.GzipFile(fileobj=buf, mode="wb", filename="", mtime=0) as gz:
        with tarfile.open(fileobj=gz, mode="w", format=tarfile.GNU_FORMAT) as tar:
            for name, data in files:
                info = tarfile.TarInfo(name)
                info.size = len(data)
                info.mtime = 0
                info.mode = 0o644
                info.uid = info.gid = 0
                info.uname = info.gname = ""
                tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def package_output(output_dir: Path, artifact_dir: Path, consume: bool = False) -> Artifact:
    """Pack the build output into artifact_dir/<sha256>.tar.gz and mark it as latest.

    With consume=True the output directory is deleted once the artifact is on disk.
    """
    if not output_dir.is_dir():
        raise PackagingError("output directory does not exist", str(output_dir))
    listing = _list_files(output_dir)
    if not listing:
        raise PackagingError("output directory is empty", str(output_dir))

    files, records = [], []
    for rel, path in listing:
        try:
            data = path.read_bytes()
        except OSError as e:
            raise PackagingError(f"unreadable file: {e}", rel) from e
        files.append((rel, data))
        records.append(FileRecord(path=rel, size=len(data), sha256=sha256_bytes(data)))

    archive = pack(files)
    artifact_id = sha256_bytes(archive)
    path = artifact_dir / f"{artifact_id}{ARCHIVE_SUFFIX}"
    try:
        if not path.exists():
            write_atomic(path, archive)
        write_atomic(artifact_dir / LATEST_FILE, artifact_id.encode())
    except OSError as e:
        raise PackagingError(f"cannot write artifact: {e}", str(artifact_dir)) from e
    if consume:
        try:
            shutil.rmtree(output_dir)
        except OSError as e:
            raise PackagingError(f"cannot remove packaged output: {e}", str(output_dir)) from e
    logger.info("Packaged %d file(s) as %s", len(records), artifact_id[:12])
    return Artifact(id=artifact_id, path=path, files=records, size=len(archive))


def unpack(archive: bytes) -> list[tuple[str, bytes]]:
    """Return (path, bytes) for every member; only regular files with safe paths are allowed."""
    out = []
    try:
        with tarfile.open(fileobj=io.BytesIO(archive), mode="r:gz") as tar:
            for member in tar.getmembers():
                if not member.isfile() or not is_safe_relative(member.name):
                    raise PackagingError(f"illegal archive member {member.name!r}")
                out.append((member.name, tar.extractfile(member).read()))
    except (tarfile.TarError, EOFError, OSError) as e:
        raise PackagingError(f"corrupt archive: {e}") from e
    return out


def read_artifact(path: Path) -> Artifact:
    """Load an artifact from disk, recomputing its id and file manifest."""
    try:
        archive = path.read_bytes()
    except OSError as e:
        raise PackagingError(f"unreadable artifact: {e}", str(path)) from e
    try:
        files = unpack(archive)
    except PackagingError as e:
        raise PackagingError(e.message, str(path)) from e
    records = [FileRecord(path=n, size=len(d), sha256=sha256_bytes(d)) for n, d in files]
    return Artifact(id=sha256_bytes(archive), path=path, files=records, size=len(archive))


def verify_artifact(path: Path, expected_id: str) -> Artifact:
    """Re-read an archive and check it still hashes to expected_id."""
    artifact = read_artifact(path)
    if artifact.id != expected_id:
        raise PackagingError("archive digest does not match artifact id", expected_id)
    return artifact


def resolve_artifact(artifact_dir: Path, ref: str = None) -> Path:
    """Map an artifact id (or id prefix, or None for latest) to its archive path."""
    if ref is None:
        latest = artifact_dir / LATEST_FILE
        if not latest.exists():
            raise PackagingError("no artifact has been packaged yet", str(artifact_dir))
        ref = latest.read_text().strip()
    if Path(ref).is_file():
        return Path(ref)
    matches = sorted(artifact_dir.glob(f"{ref}*{ARCHIVE_SUFFIX}"))
    if len(matches) != 1:
        raise PackagingError("no such artifact" if not matches else "ambiguous artifact id", ref)
    return matches[0]
