"""Pipeline orchestration as an explicit state machine: fetch -> load -> build -> package -> publish"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import httpx

from sitepub.config import Settings
from sitepub.core.build import build_site, collect_assets
from sitepub.core.fetch import fetch_dependencies, load_manifest
from sitepub.core.load import load_documents
from sitepub.core.models import Artifact, BuildOutput, Document, PublishResult
from sitepub.core.package import package_output
from sitepub.core.render import INDEX_TEMPLATE, JinjaRenderer
from sitepub.exceptions import SitePubError
from sitepub.publish.publisher import Publisher


logger = logging.getLogger(__name__)


class Stage(str, Enum):
    fetch   = "fetch"
    load    = "load"
    build   = "build"
    package = "package"
    publish = "publish"
    done    = "done"
    failed  = "failed"


NEXT_STAGE = {
    Stage.fetch:   Stage.load,
    Stage.load:    Stage.build,
    Stage.build:   Stage.package,
    Stage.package: Stage.publish,
    Stage.publish: Stage.done,
}


@dataclass
class PipelineRun:
    """State of one pipeline invocation. `failed` is absorbing; `done` is terminal."""
    stage:     Stage = Stage.fetch
    history:   list[tuple[Stage, str]] = field(default_factory=list)  # (stage, 'ok'|'skipped'|'failed')
    error:     Optional[SitePubError] = None
    failed_at: Optional[Stage] = None

    fetched:   list[tuple[str, str]] = field(default_factory=list)
    documents: list[Document] = field(default_factory=list)
    output:    Optional[BuildOutput] = None
    artifact:  Optional[Artifact] = None
    result:    Optional[PublishResult] = None

    @property
    def ok(self) -> bool:
        return self.stage == Stage.done

    def advance(self, outcome: str = "ok") -> None:
        if self.stage not in NEXT_STAGE:
            raise RuntimeError(f"cannot advance from terminal stage {self.stage.value}")
        self.history.append((self.stage, outcome))
        self.stage = NEXT_STAGE[self.stage]

    def fail(self, error: SitePubError) -> None:
        if self.stage not in NEXT_STAGE:
            raise RuntimeError(f"cannot fail from terminal stage {self.stage.value}")
        self.history.append((self.stage, "failed"))
        self.failed_at = self.stage
        self.error = error
        self.stage = Stage.failed


def _fetch(run: PipelineRun, settings: Settings, client: httpx.Client = None) -> None:
    entries = load_manifest(Path(settings.manifest_file))
    run.fetched = fetch_dependencies(
        entries, Path("."), settings.registry_url,
        timeout=settings.fetch_timeout, workers=settings.fetch_workers, client=client,
    )


def _load(run: PipelineRun, settings: Settings) -> None:
    run.documents = load_documents(Path(settings.content_dir), settings.include_drafts)


def _build(run: PipelineRun, settings: Settings) -> None:
    template_dir = Path(settings.template_dir)
    run.output = build_site(
        run.documents,
        collect_assets(Path(settings.static_dir)),
        JinjaRenderer(template_dir),
        Path(settings.output_dir),
        site_url=settings.site_url,
        site_name=settings.site_name,
        index=(template_dir / INDEX_TEMPLATE).exists(),
        workers=settings.build_workers,
    )


def _package(run: PipelineRun, settings: Settings) -> None:
    run.artifact = package_output(
        Path(settings.output_dir), Path(settings.artifact_dir), consume=settings.clean_output,
    )


def run_pipeline(
    settings: Settings,
    publisher: Publisher = None,
    skip_fetch: bool = False,
    client: httpx.Client = None,
    ) -> PipelineRun:
    """Drive every stage in order; the first SitePubError moves the run to `failed`.

    Without a publisher the publish stage is skipped and the run still ends in
    `done`, but nothing is live.
    """
    run = PipelineRun()
    steps = {
        Stage.fetch:   None if skip_fetch else (lambda: _fetch(run, settings, client)),
        Stage.load:    lambda: _load(run, settings),
        Stage.build:   lambda: _build(run, settings),
        Stage.package: lambda: _package(run, settings),
        Stage.publish: None if publisher is None else (lambda: setattr(run, "result", publisher.publish(run.artifact))),
    }

    while run.stage in NEXT_STAGE:
        step = steps[run.stage]
        if step is None:
            logger.info("Stage %s skipped", run.stage.value)
            run.advance("skipped")
            continue
        logger.info("Stage %s", run.stage.value)
        try:
            step()
        except SitePubError as e:
            logger.error("Stage %s failed: %s", run.stage.value, e)
            run.fail(e)
            break
        run.advance()
    return run
