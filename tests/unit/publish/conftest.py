"""Shared fixtures for publish unit tests"""

from pathlib import Path

import pytest

from sitepub.core.package import package_output
from sitepub.crud.database import init_db, make_engine
from sitepub.publish import LocalDirectoryTarget, Publisher


SITE_URL = "https://example.org/"


@pytest.fixture(name="engine")
def engine_fixture(tmp_path):
    """File-backed SQLite so worker threads share one database."""
    engine = make_engine(f"sqlite:///{tmp_path}/sitepub.db")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="target")
def target_fixture(tmp_path):
    return LocalDirectoryTarget(tmp_path / "site", SITE_URL)


@pytest.fixture(name="make_artifact")
def make_artifact_fixture(tmp_path):
    """Package a tiny site whose index.html references a version-specific script."""
    def make(tag: str):
        out = tmp_path / f"build-{tag}"
        (out / "static").mkdir(parents=True)
        (out / "index.html").write_text(f'<script src="static/app-{tag}.js"></script>')
        (out / "static" / f"app-{tag}.js").write_text(f"// {tag}")
        return package_output(out, tmp_path / "artifacts")
    return make


@pytest.fixture(name="publisher")
def publisher_fixture(engine, target, request):
    """Each test gets its own site name so in-process queues never overlap."""
    return Publisher(engine, target, site=request.node.name, timeout=5.0, max_releases=5)


def live_files(target: LocalDirectoryTarget) -> dict[str, str]:
    root: Path = target.live_root()
    return {p.relative_to(root).as_posix(): p.read_text() for p in root.rglob('*') if p.is_file()}


@pytest.fixture(name="live_files")
def live_files_fixture():
    return live_files
