"""Dependency fetching: pinned npm packages -> files copied into the source tree"""

import hashlib
import io
import logging
import re
import tarfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from urllib.parse import quote

import httpx
import yaml

from sitepub.core.models import CopyRule, ManifestEntry
from sitepub.core.utils.fs import is_safe_relative, write_atomic
from sitepub.exceptions import (
    DependencyFetchFailed,
    DependencyFileMissing,
    DependencyUnresolvable,
    ManifestInvalid,
    SitePubError,
)


logger = logging.getLogger(__name__)

PINNED_RE = re.compile(r'^\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$')


def _parse_entry(name: str, spec) -> ManifestEntry:
    """Validate one manifest mapping value into a ManifestEntry."""
    if not isinstance(spec, dict):
        raise ManifestInvalid("expected a mapping with 'version' and 'copies'", name)
    version = str(spec.get("version", "")).strip()
    if not PINNED_RE.match(version):
        raise ManifestInvalid(f"version must be pinned (e.g. 3.0.6), got {version!r}", name)
    copies = spec.get("copies")
    if not isinstance(copies, dict) or not copies:
        raise ManifestInvalid("'copies' must map package files to destinations", name)
    rules = []
    for src, dest in copies.items():
        if not (isinstance(src, str) and isinstance(dest, str)):
            raise ManifestInvalid("copy paths must be strings", name)
        if not is_safe_relative(src) or not is_safe_relative(dest):
            raise ManifestInvalid(f"copy paths must be relative: {src} -> {dest}", name)
        rules.append(CopyRule(source=src, destination=dest))
    return ManifestEntry(name=name, version=version, copies=rules)


def load_manifest(path: Path) -> list[ManifestEntry]:
    """Parse assets.yaml into entries sorted by name. A missing file means no dependencies."""
    if not path.exists():
        return []
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ManifestInvalid(f"invalid YAML: {e}", str(path)) from e
    if not isinstance(data, dict):
        raise ManifestInvalid("expected a mapping of package name -> spec", str(path))

    entries = [_parse_entry(str(name), spec) for name, spec in sorted(data.items())]
    seen: dict[str, str] = {}
    for entry in entries:
        for rule in entry.copies:
            if rule.destination in seen:
                raise ManifestInvalid(
                    f"destination {rule.destination} also claimed by {seen[rule.destination]}", entry.name
                )
            seen[rule.destination] = entry.name
    return entries


def _resolve(client: httpx.Client, registry_url: str, entry: ManifestEntry) -> dict:
    """Return the registry's `dist` record for the pinned version."""
    ident = f"{entry.name}@{entry.version}"
    url = f"{registry_url.rstrip('/')}/{quote(entry.name, safe='@')}/{entry.version}"
    try:
        resp = client.get(url)
    except httpx.HTTPError as e:
        raise DependencyUnresolvable(f"registry unreachable: {e}", ident) from e
    if resp.status_code == 404:
        raise DependencyUnresolvable("package or version not found", ident)
    if resp.is_error:
        raise DependencyUnresolvable(f"registry returned HTTP {resp.status_code}", ident)
    try:
        dist = resp.json().get("dist") or {}
    except (ValueError, AttributeError) as e:
        raise DependencyUnresolvable(f"malformed registry metadata: {e}", ident) from e
    if not dist.get("tarball"):
        raise DependencyUnresolvable("registry metadata has no tarball", ident)
    return dist


def _download(client: httpx.Client, dist: dict, ident: str) -> bytes:
    try:
        resp = client.get(dist["tarball"])
        resp.raise_for_status()
    except httpx.HTTPError as e:
        raise DependencyUnresolvable(f"tarball download failed: {e}", ident) from e
    data = resp.content
    expected = dist.get("shasum")
    if expected and hashlib.sha1(data).hexdigest() != expected:
        raise DependencyUnresolvable("tarball shasum mismatch", ident)
    return data


def _extract(data: bytes, entry: ManifestEntry) -> dict[str, bytes]:
    """Map each rule destination to the bytes of its package member."""
    ident = f"{entry.name}@{entry.version}"
    wanted = {rule.source: rule.destination for rule in entry.copies}
    found: dict[str, bytes] = {}
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
            for member in tar.getmembers():
                if not member.isfile():
                    continue
                # npm tarballs nest everything under one top-level directory, usually 'package/'
                inner = member.name.split("/", 1)[-1]
                if inner in wanted:
                    found[wanted[inner]] = tar.extractfile(member).read()
    except (tarfile.TarError, EOFError, OSError) as e:
        raise DependencyUnresolvable(f"corrupt tarball: {e}", ident) from e

    missing = sorted(src for src, dest in wanted.items() if dest not in found)
    if missing:
        raise DependencyFileMissing(f"not in package: {', '.join(missing)}", ident)
    return found


def fetch_entry(client: httpx.Client, entry: ManifestEntry, root: Path, registry_url: str) -> list[tuple[str, str]]:
    """Fetch one package and materialize its files. Returns (destination, 'written'|'unchanged')."""
    ident = f"{entry.name}@{entry.version}"
    dist = _resolve(client, registry_url, entry)
    files = _extract(_download(client, dist, ident), entry)

    results = []
    for dest, content in sorted(files.items()):
        target = root / dest
        try:
            if target.is_file() and target.read_bytes() == content:
                results.append((dest, "unchanged"))
                continue
            write_atomic(target, content)
        except OSError as e:
            raise DependencyUnresolvable(f"cannot write {dest}: {e}", ident) from e
        logger.info("Fetched %s -> %s", ident, dest)
        results.append((dest, "written"))
    return results


def fetch_dependencies(
    entries: list[ManifestEntry],
    root: Path,
    registry_url: str,
    timeout: float = 30.0,
    workers: int = 4,
    client: httpx.Client = None,
    ) -> list[tuple[str, str]]:
    """Fetch all entries concurrently; raise DependencyFetchFailed listing every failed entry."""
    if not entries:
        return []
    own_client = client is None
    if own_client:
        client = httpx.Client(timeout=timeout, follow_redirects=True)

    results: list[tuple[str, str]] = []
    errors: list[SitePubError] = []
    try:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [(e, pool.submit(fetch_entry, client, e, root, registry_url)) for e in entries]
            for entry, future in futures:
                try:
                    results.extend(future.result())
                except (DependencyUnresolvable, DependencyFileMissing) as e:
                    logger.error("Dependency %s@%s failed: %s", entry.name, entry.version, e.message)
                    errors.append(e)
    finally:
        if own_client:
            client.close()

    if errors:
        raise DependencyFetchFailed(errors)
    return sorted(results)
