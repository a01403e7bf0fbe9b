"""Live pointer persistence: read, compare-and-swap, deployment history and retention"""

from datetime import datetime

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from sitepub.crud.tables import Deployment, LivePointer


def get_pointer(session: Session, site: str) -> LivePointer:
    """Return the site's pointer, creating an empty one (version 0) on first use."""
    pointer = session.get(LivePointer, site)
    if pointer is None:
        pointer = LivePointer(site=site)
        session.add(pointer)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            pointer = session.get(LivePointer, site)
    return pointer


def compare_and_swap(
    session: Session,
    site: str,
    expected_version: int,
    artifact_id: str,
    action: str = "publish",
    ) -> Deployment | None:
    """Point the site at artifact_id iff the pointer is still at expected_version.

    Returns the recorded Deployment, or None when another writer got there first.
    Flushes but does not commit; caller controls the transaction.
    """
    number = (session.exec(
        select(func.max(Deployment.number)).where(Deployment.site == site)
    ).one() or 0) + 1

    result = session.connection().execute(
        update(LivePointer)
        .where(LivePointer.site == site)
        .where(LivePointer.version == expected_version)
        .values(
            artifact_id=artifact_id,
            deployment=number,
            version=expected_version + 1,
            updated_at=datetime.now(),
        )
    )
    if result.rowcount != 1:
        return None

    deployment = Deployment(site=site, number=number, artifact_id=artifact_id, action=action)
    session.add(deployment)
    session.flush()
    return deployment


def list_deployments(session: Session, site: str) -> list[Deployment]:
    """Return all deployments for a site, newest first."""
    return list(session.exec(
        select(Deployment).where(Deployment.site == site).order_by(Deployment.number.desc())
    ).all())


def get_deployment(session: Session, site: str, number: int) -> Deployment | None:
    return session.exec(
        select(Deployment).where(Deployment.site == site).where(Deployment.number == number)
    ).one_or_none()


def retained_artifacts(session: Session, site: str, max_releases: int) -> set[str] | None:
    """Artifact ids of the newest max_releases distinct deployments. None when 0 (keep all)."""
    if max_releases == 0:
        return None
    keep: list[str] = []
    for d in list_deployments(session, site):
        if d.artifact_id not in keep:
            keep.append(d.artifact_id)
        if len(keep) >= max_releases:
            break
    return set(keep)
