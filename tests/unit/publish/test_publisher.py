"""Unit tests for publish/publisher.py"""

import re
import subprocess
import sys
import threading
import time

import pytest
from sqlmodel import Session

from sitepub.core.models import FileRecord
from sitepub.crud.deployments import compare_and_swap, get_pointer
from sitepub.exceptions import PublishBusy, PublishRejected, PublishTimeout
from sitepub.publish import LocalDirectoryTarget, Publisher
from sitepub.publish.publisher import _queue_for


# --- helpers ---

class SlowTarget:
    """Wraps a target and delays uploads past the publisher's timeout."""

    def __init__(self, inner, delay: float):
        self.inner = inner
        self.delay = delay
        self.url = inner.url

    def upload(self, artifact):
        time.sleep(self.delay)
        return self.inner.upload(artifact)

    def __getattr__(self, name):
        return getattr(self.inner, name)


class RacingTarget(SlowTarget):
    """Simulates another process winning the pointer while our upload is in flight."""

    def __init__(self, inner, engine, site, rival_id):
        super().__init__(inner, 0)
        self.engine, self.site, self.rival_id = engine, site, rival_id

    def upload(self, artifact):
        with Session(self.engine) as session:
            pointer = get_pointer(session, self.site)
            compare_and_swap(session, self.site, pointer.version, self.rival_id)
            session.commit()
        return self.inner.upload(artifact)


class ReadOnlyTarget(SlowTarget):
    """Uploads succeed but the live link cannot be replaced."""

    def __init__(self, inner):
        super().__init__(inner, 0)

    def activate(self, release_id):
        raise PermissionError(f"cannot replace {self.inner.current}")


HUNG_PUBLISH = """
import sys
import time
from pathlib import Path

from sitepub.core.package import package_output
from sitepub.crud.database import init_db, make_engine
from sitepub.exceptions import PublishTimeout
from sitepub.publish import LocalDirectoryTarget, Publisher


class HungTarget(LocalDirectoryTarget):
    def upload(self, artifact):
        time.sleep(30)
        return super().upload(artifact)


root = Path(sys.argv[1])
(root / "public").mkdir()
(root / "public" / "index.html").write_text("hello")
artifact = package_output(root / "public", root / "artifacts")
engine = make_engine(f"sqlite:///{root}/sitepub.db")
init_db(engine)
publisher = Publisher(engine, HungTarget(root / "site", "/"), site="hung", timeout=0.2)
try:
    publisher.publish(artifact)
except PublishTimeout:
    print("timeout")
"""


# --- publish ---
def test_publish_makes_artifact_live(publisher, target, make_artifact, live_files):
    artifact = make_artifact("a")
    result = publisher.publish(artifact)
    assert result.deployment == 1
    assert result.artifact_id == artifact.id
    assert result.url == "https://example.org/"
    assert target.live_release() == artifact.id
    assert publisher.live() == artifact.id
    assert live_files(target)["static/app-a.js"] == "// a"


def test_publish_swaps_to_new_artifact(publisher, target, make_artifact):
    a, b = make_artifact("a"), make_artifact("b")
    publisher.publish(a)
    result = publisher.publish(b)
    assert result.deployment == 2
    assert target.live_release() == b.id
    assert [d.artifact_id for d in publisher.history()] == [b.id, a.id]


def test_publish_rejects_corrupt_artifact(publisher, target, make_artifact):
    """A damaged archive is refused before anything changes."""
    good, bad = make_artifact("a"), make_artifact("b")
    publisher.publish(good)
    bad.path.write_bytes(b"garbage")
    with pytest.raises(PublishRejected):
        publisher.publish(bad)
    assert target.live_release() == good.id
    assert not target.has_release(bad.id)


def test_publish_rejects_digest_mismatch(publisher, make_artifact):
    artifact = make_artifact("a")
    forged = artifact.model_copy(update={"id": "f" * 64})
    with pytest.raises(PublishRejected, match="digest"):
        publisher.publish(forged)


def test_publish_rejects_manifest_mismatch(publisher, make_artifact):
    artifact = make_artifact("a")
    forged = artifact.model_copy(update={"files": [FileRecord(path="other.html", size=1, sha256="0" * 64)]})
    with pytest.raises(PublishRejected, match="manifest"):
        publisher.publish(forged)


def test_publish_timeout_keeps_previous_live(engine, target, make_artifact, request):
    """If the target does not acknowledge in time, the old release stays live."""
    a, b = make_artifact("a"), make_artifact("b")
    site = request.node.name
    Publisher(engine, target, site=site).publish(a)

    slow = Publisher(engine, SlowTarget(target, delay=0.5), site=site, timeout=0.05)
    with pytest.raises(PublishTimeout) as exc:
        slow.publish(b)

    assert exc.value.identifier == b.id
    assert target.live_release() == a.id
    assert slow.live() == a.id
    assert len(slow.history()) == 1


def test_publish_timeout_does_not_keep_process_alive(tmp_path):
    """A hung upload is abandoned; the process exits right after PublishTimeout."""
    started = time.monotonic()
    proc = subprocess.run(
        [sys.executable, "-c", HUNG_PUBLISH, str(tmp_path)],
        capture_output=True, text=True, timeout=60,
    )
    elapsed = time.monotonic() - started
    assert proc.returncode == 0, proc.stderr
    assert proc.stdout.strip() == "timeout"
    assert elapsed < 20


def test_publish_upload_os_error_is_rejected(engine, tmp_path, make_artifact, request):
    """A target that cannot store the release fails the publish, nothing goes live."""
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    publisher = Publisher(engine, LocalDirectoryTarget(blocker, "/"), site=request.node.name)
    artifact = make_artifact("a")
    with pytest.raises(PublishRejected, match="upload failed") as exc:
        publisher.publish(artifact)
    assert exc.value.identifier == artifact.id
    assert publisher.live() is None
    assert publisher.history() == []


def test_publish_activation_os_error_keeps_pointer(engine, target, make_artifact, request):
    a, b = make_artifact("a"), make_artifact("b")
    site = request.node.name
    Publisher(engine, target, site=site).publish(a)

    broken = Publisher(engine, ReadOnlyTarget(target), site=site)
    with pytest.raises(PublishRejected, match="activation failed"):
        broken.publish(b)
    assert broken.live() == a.id
    assert target.live_release() == a.id
    assert len(broken.history()) == 1


def test_publish_busy_when_pointer_moves(engine, target, make_artifact, request):
    """A lost compare-and-swap fails the publish and never activates it."""
    a, b = make_artifact("a"), make_artifact("b")
    site = request.node.name
    Publisher(engine, target, site=site).publish(a)

    racing = Publisher(engine, RacingTarget(target, engine, site, rival_id="r" * 64), site=site)
    with pytest.raises(PublishBusy):
        racing.publish(b)

    assert target.live_release() == a.id
    assert racing.live() == "r" * 64


def test_publish_prunes_old_releases(engine, target, make_artifact, request):
    publisher = Publisher(engine, target, site=request.node.name, max_releases=1)
    a, b = make_artifact("a"), make_artifact("b")
    publisher.publish(a)
    publisher.publish(b)
    assert not target.has_release(a.id)
    assert target.has_release(b.id)


# --- concurrency ---

def test_ticket_queue_is_fifo():
    """Waiters are admitted strictly in arrival order."""
    queue = _queue_for("fifo-test")
    order: list[int] = []

    def worker(i):
        with queue.turn():
            order.append(i)

    threads = []
    with queue.turn():
        for i in range(5):
            t = threading.Thread(target=worker, args=(i,))
            t.start()
            threads.append(t)
            deadline = time.monotonic() + 5
            while queue._next != i + 2 and time.monotonic() < deadline:  # wait until it holds a ticket
                time.sleep(0.001)
    for t in threads:
        t.join(5)
    assert order == [0, 1, 2, 3, 4]


def test_concurrent_publishes_never_interleave(publisher, target, make_artifact):
    """Publishes from many threads serialize into consecutive deployments."""
    artifacts = [make_artifact(str(i)) for i in range(4)]
    results, errors = [], []

    def run(artifact):
        try:
            results.append(publisher.publish(artifact))
        except Exception as e:  # collected and asserted below
            errors.append(e)

    threads = [threading.Thread(target=run, args=(a,)) for a in artifacts]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)

    assert errors == []
    assert sorted(r.deployment for r in results) == [1, 2, 3, 4]
    last = max(results, key=lambda r: r.deployment)
    assert target.live_release() == last.artifact_id


def test_observers_never_see_mixed_releases(publisher, target, make_artifact):
    """Readers resolving the live root once always find the assets its HTML references."""
    a, b = make_artifact("a"), make_artifact("b")
    publisher.publish(a)
    stop = threading.Event()
    problems: list[str] = []

    def observe():
        while not stop.is_set():
            root = target.live_root()
            html = (root / "index.html").read_text()
            script = re.search(r'src="([^"]+)"', html).group(1)
            tag = script.rsplit("-", 1)[1].removesuffix(".js")
            if (root / script).read_text() != f"// {tag}":
                problems.append(f"{root.name}: {script}")

    readers = [threading.Thread(target=observe) for _ in range(4)]
    for r in readers:
        r.start()
    try:
        for i in range(20):
            publisher.publish(b if i % 2 == 0 else a)
    finally:
        stop.set()
        for r in readers:
            r.join(5)
    assert problems == []


# --- rollback ---

def test_rollback_restores_previous(publisher, target, make_artifact):
    a, b = make_artifact("a"), make_artifact("b")
    publisher.publish(a)
    publisher.publish(b)
    result = publisher.rollback()
    assert result.deployment == 3
    assert result.artifact_id == a.id
    assert target.live_release() == a.id
    assert publisher.history()[0].action == "rollback"


def test_rollback_to_specific_deployment(publisher, target, make_artifact):
    a, b, c = make_artifact("a"), make_artifact("b"), make_artifact("c")
    for artifact in (a, b, c):
        publisher.publish(artifact)
    assert publisher.rollback(to=2).artifact_id == b.id
    assert target.live_release() == b.id


def test_rollback_without_history(publisher, make_artifact):
    with pytest.raises(PublishRejected):
        publisher.rollback()
    publisher.publish(make_artifact("a"))
    with pytest.raises(PublishRejected, match="no earlier"):
        publisher.rollback()
    with pytest.raises(PublishRejected, match="no deployment"):
        publisher.rollback(to=7)


def test_rollback_to_pruned_release(engine, target, make_artifact, request):
    publisher = Publisher(engine, target, site=request.node.name, max_releases=1)
    a, b = make_artifact("a"), make_artifact("b")
    publisher.publish(a)
    publisher.publish(b)
    with pytest.raises(PublishRejected, match="pruned"):
        publisher.rollback()
    assert target.live_release() == b.id
