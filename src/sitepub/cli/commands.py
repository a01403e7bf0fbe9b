"""CLI command implementations"""

from pathlib import Path
from typing import Annotated, Optional

import typer

from sitepub.config import Settings, load_config
from sitepub.core.build import build_site, collect_assets
from sitepub.core.fetch import fetch_dependencies, load_manifest
from sitepub.core.load import load_documents
from sitepub.core.package import package_output, read_artifact, resolve_artifact
from sitepub.core.pipeline import Stage, run_pipeline
from sitepub.core.render import INDEX_TEMPLATE, JinjaRenderer
from sitepub.crud.database import init_db, make_engine
from sitepub.exceptions import PackagingError, PublishRejected, SitePubError
from sitepub.publish import LocalDirectoryTarget, Publisher


def _fail(msg: str, cause: Exception = None) -> None:
    """Print a user-friendly error to stderr and exit 1."""
    typer.echo(f"Error: {msg}", err=True)
    if cause:
        typer.echo(f"  {cause}", err=True)
    raise typer.Exit(1)


def _fail_stage(e: SitePubError) -> None:
    _fail(f"[{e.stage}] {e}")


def _settings(overrides: dict = None) -> Settings:
    """Load config with standard CLI error handling."""
    try:
        return load_config(overrides=overrides)
    except ValueError as e:
        _fail(str(e))


def _publisher(settings: Settings) -> Publisher:
    engine = make_engine(settings.db_url)
    init_db(engine)
    target = LocalDirectoryTarget(Path(settings.deploy_dir), settings.site_url)
    return Publisher(
        engine, target,
        site=settings.site_name,
        timeout=settings.publish_timeout,
        max_releases=settings.max_releases,
    )


def fetch_cmd(
    manifest: Annotated[Optional[str], typer.Option("--manifest", help="Dependency manifest")] = None,
    ):
    """Fetch pinned third-party assets into the source tree."""
    settings = _settings(overrides={"manifest_file": manifest})
    try:
        entries = load_manifest(Path(settings.manifest_file))
        results = fetch_dependencies(
            entries, Path("."), settings.registry_url,
            timeout=settings.fetch_timeout, workers=settings.fetch_workers,
        )
    except SitePubError as e:
        _fail_stage(e)
    for dest, status in results:
        typer.echo(f"  {status}: {dest}")
    typer.echo(f"Fetched {len(entries)} package(s), {len(results)} file(s)")


def build_cmd(
    content: Annotated[Optional[str], typer.Option("--content-dir", help="Document root")] = None,
    out: Annotated[Optional[str], typer.Option("--out-dir", help="Output directory")] = None,
    drafts: Annotated[Optional[bool], typer.Option("--drafts/--no-drafts", help="Include draft documents")] = None,
    ):
    """Load documents and render the site into the output directory."""
    settings = _settings(overrides={"content_dir": content, "output_dir": out, "include_drafts": drafts})
    template_dir = Path(settings.template_dir)
    try:
        documents = load_documents(Path(settings.content_dir), settings.include_drafts)
        output = build_site(
            documents,
            collect_assets(Path(settings.static_dir)),
            JinjaRenderer(template_dir),
            Path(settings.output_dir),
            site_url=settings.site_url,
            site_name=settings.site_name,
            index=(template_dir / INDEX_TEMPLATE).exists(),
            workers=settings.build_workers,
        )
    except SitePubError as e:
        _fail_stage(e)
    for doc in documents:
        typer.echo(f"  {doc.identifier} -> {doc.output_path}")
    typer.echo(f"Built {len(documents)} document(s), {len(output.files)} file(s) to {settings.output_dir}/")


def package_cmd(
    out: Annotated[Optional[str], typer.Option("--out-dir", help="Build output to package")] = None,
    clean: Annotated[Optional[bool], typer.Option("--clean/--keep", help="Delete the build output after packaging")] = None,
    ):
    """Pack the build output into a content-addressed artifact."""
    settings = _settings(overrides={"output_dir": out, "clean_output": clean})
    try:
        artifact = package_output(
            Path(settings.output_dir), Path(settings.artifact_dir), consume=settings.clean_output,
        )
    except SitePubError as e:
        _fail_stage(e)
    typer.echo(f"Packaged {len(artifact.files)} file(s): {artifact.id}")


def publish_cmd(
    artifact_ref: Annotated[Optional[str], typer.Argument(help="Artifact id, id prefix or path; default latest")] = None,
    ):
    """Make a packaged artifact live."""
    settings = _settings()
    publisher = _publisher(settings)
    try:
        try:
            artifact = read_artifact(resolve_artifact(Path(settings.artifact_dir), artifact_ref))
        except PackagingError as e:
            raise PublishRejected(e.message, e.identifier) from e
        result = publisher.publish(artifact)
    except SitePubError as e:
        _fail_stage(e)
    typer.echo(f"Deployment {result.deployment}: {result.artifact_id[:12]} live at {result.url}")


def deploy_cmd(
    skip_fetch: Annotated[bool, typer.Option("--skip-fetch", help="Use assets already in the tree")] = False,
    ):
    """Run the full pipeline: fetch -> load -> build -> package -> publish."""
    settings = _settings()
    run = run_pipeline(settings, publisher=_publisher(settings), skip_fetch=skip_fetch)
    for stage, outcome in run.history:
        typer.echo(f"  {stage.value}: {outcome}")
    if run.stage == Stage.failed:
        _fail_stage(run.error)
    typer.echo(f"Deployment {run.result.deployment}: {run.result.artifact_id[:12]} live at {run.result.url}")


def rollback_cmd(
    to: Annotated[Optional[int], typer.Option("--to", help="Deployment number to restore")] = None,
    ):
    """Re-activate a previous deployment (default: the one before the live one)."""
    settings = _settings()
    try:
        result = _publisher(settings).rollback(to)
    except SitePubError as e:
        _fail_stage(e)
    typer.echo(f"Deployment {result.deployment}: rolled back to {result.artifact_id[:12]} at {result.url}")


def history_cmd():
    """List deployments for the site, newest first."""
    settings = _settings()
    publisher = _publisher(settings)
    deployments = publisher.history()
    if not deployments:
        typer.echo("No deployments yet.")
        raise typer.Exit(1)
    for i, d in enumerate(deployments):
        marker = "*" if i == 0 else " "  # newest deployment is the live one
        typer.echo(f"{marker} {d.number:>4}  {d.created_at:%Y-%m-%d %H:%M:%S}  {d.action:<8}  {d.artifact_id[:12]}")
