"""Single-writer publishing: integrity check, bounded upload, compare-and-swap go-live"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from sqlmodel import Session

from sitepub.core.models import Artifact, PublishResult
from sitepub.core.package import verify_artifact
from sitepub.crud.deployments import (
    compare_and_swap,
    get_deployment,
    get_pointer,
    list_deployments,
    retained_artifacts,
)
from sitepub.crud.tables import Deployment
from sitepub.exceptions import PackagingError, PublishBusy, PublishRejected, PublishTimeout
from sitepub.publish.target import HostingTarget


logger = logging.getLogger(__name__)


class _TicketQueue:
    """FIFO mutual exclusion: callers proceed strictly in the order they arrived."""

    def __init__(self):
        self._cond = threading.Condition()
        self._next = 0
        self._serving = 0

    @contextmanager
    def turn(self) -> Iterator[int]:
        with self._cond:
            ticket = self._next
            self._next += 1
            while self._serving != ticket:
                self._cond.wait()
        try:
            yield ticket
        finally:
            with self._cond:
                self._serving += 1
                self._cond.notify_all()


_queues: dict[str, _TicketQueue] = {}
_queues_lock = threading.Lock()


def _queue_for(site: str) -> _TicketQueue:
    with _queues_lock:
        return _queues.setdefault(site, _TicketQueue())


class Publisher:
    """Makes one artifact live for a site at a time.

    Publishes for the same site queue behind each other in submission order.
    The persisted pointer is only moved by compare-and-swap, so a publish from
    another process that lands first turns ours into PublishBusy rather than
    an interleaving.
    """

    def __init__(
        self,
        engine,
        target: HostingTarget,
        site: str = "site",
        timeout: float = 60.0,
        max_releases: int = 5,
        ):
        self.engine = engine
        self.target = target
        self.site = site
        self.timeout = timeout
        self.max_releases = max_releases
        self._queue = _queue_for(site)

    # --- checks ---

    def verify(self, artifact: Artifact) -> None:
        """Reject artifacts whose bytes or manifest don't match what was packaged."""
        try:
            actual = verify_artifact(artifact.path, artifact.id)
        except PackagingError as e:
            raise PublishRejected(e.message, artifact.id) from e
        if not actual.files:
            raise PublishRejected("artifact is empty", artifact.id)
        if artifact.files and actual.files != artifact.files:
            raise PublishRejected("archive contents differ from the packaged manifest", artifact.id)

    def _upload(self, artifact: Artifact) -> str:
        """Run the upload with a bound; a late upload only leaves an unreferenced release.

        The worker is a daemon thread so a hung target cannot keep the process
        alive after PublishTimeout.
        """
        outcome: dict = {}

        def work():
            try:
                outcome["release"] = self.target.upload(artifact)
            except BaseException as e:
                outcome["error"] = e

        worker = threading.Thread(target=work, name=f"upload-{artifact.id[:12]}", daemon=True)
        worker.start()
        worker.join(self.timeout)
        if worker.is_alive():
            raise PublishTimeout(f"no acknowledgement within {self.timeout}s", artifact.id)
        error = outcome.get("error")
        if isinstance(error, OSError):
            raise PublishRejected(f"upload failed: {error}", artifact.id) from error
        if error is not None:
            raise error
        return outcome["release"]

    # --- swap ---

    def _snapshot(self) -> tuple[int, str | None]:
        with Session(self.engine) as session:
            pointer = get_pointer(session, self.site)
            session.commit()
            return pointer.version, pointer.artifact_id

    def _swap(self, expected_version: int, release_id: str, action: str) -> Deployment:
        """Move the pointer and the target together, or neither."""
        with Session(self.engine, expire_on_commit=False) as session:
            deployment = compare_and_swap(session, self.site, expected_version, release_id, action)
            if deployment is None:
                session.rollback()
                raise PublishBusy("live pointer changed during publish", release_id)
            try:
                self.target.activate(release_id)
            except OSError as e:
                session.rollback()
                raise PublishRejected(f"activation failed: {e}", release_id) from e
            except BaseException:
                session.rollback()
                raise
            session.commit()
            return deployment

    def _prune(self) -> None:
        with Session(self.engine) as session:
            keep = retained_artifacts(session, self.site, self.max_releases)
        if keep is None:
            return
        try:
            pruned = self.target.prune(keep)
        except OSError as e:
            logger.warning("Pruning old releases failed: %s", e)
            return
        for release in pruned:
            logger.info("Pruned release %s", release[:12])

    # --- operations ---

    def publish(self, artifact: Artifact) -> PublishResult:
        """Verify, upload and atomically make the artifact live."""
        with self._queue.turn():
            self.verify(artifact)
            version, previous = self._snapshot()
            release_id = self._upload(artifact)
            deployment = self._swap(version, release_id, "publish")
            logger.info(
                "Deployment %d: %s live (was %s)",
                deployment.number, release_id[:12], previous[:12] if previous else "nothing",
            )
            self._prune()
        return PublishResult(deployment=deployment.number, artifact_id=release_id, url=self.target.url)

    def rollback(self, to: int = None) -> PublishResult:
        """Re-activate an earlier deployment's artifact; default is the one before the live one."""
        with self._queue.turn():
            version, live = self._snapshot()
            with Session(self.engine) as session:
                if to is not None:
                    chosen = get_deployment(session, self.site, to)
                    if chosen is None:
                        raise PublishRejected(f"no deployment {to}", self.site)
                else:
                    chosen = next((d for d in list_deployments(session, self.site) if d.artifact_id != live), None)
                    if chosen is None:
                        raise PublishRejected("no earlier deployment to roll back to", self.site)
                artifact_id = chosen.artifact_id
            if not self.target.has_release(artifact_id):
                raise PublishRejected("release has been pruned from the target", artifact_id)
            deployment = self._swap(version, artifact_id, "rollback")
            logger.info("Deployment %d: rolled back to %s", deployment.number, artifact_id[:12])
        return PublishResult(deployment=deployment.number, artifact_id=artifact_id, url=self.target.url)

    def history(self) -> list[Deployment]:
        with Session(self.engine, expire_on_commit=False) as session:
            return list_deployments(session, self.site)

    def live(self) -> str | None:
        return self._snapshot()[1]
