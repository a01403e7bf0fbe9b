"""Site building: plan every output path, render into a staging tree, swap it into place"""

import logging
import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path, PurePosixPath
from typing import Callable, NamedTuple, Sequence

import jinja2

from sitepub.core.models import Asset, BuildOutput, Document, FileRecord
from sitepub.core.render import INDEX_IDENTIFIER, Renderer
from sitepub.core.utils.fs import is_safe_relative
from sitepub.core.utils.hashing import sha256_bytes
from sitepub.exceptions import OutputCollision, RenderError


logger = logging.getLogger(__name__)

STATIC_PREFIX = "static"
INDEX_PATH = "index.html"
SITEMAP_PATH = "sitemap.xml"

SITEMAP_TEMPLATE = """\
<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>{{ base }}</loc></url>
{% for doc in documents %}
  <url><loc>{{ base ~ doc.url_path }}</loc><lastmod>{{ doc.meta.date.isoformat() }}</lastmod></url>
{% endfor %}
</urlset>
"""

_sitemap = jinja2.Environment(
    autoescape=True,
    undefined=jinja2.StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
).from_string(SITEMAP_TEMPLATE)


class Target(NamedTuple):
    path:    str                      # relative POSIX path in the output tree
    origin:  str                      # what claims the path, for error messages
    produce: Callable[[], bytes]


def collect_assets(static_dir: Path) -> list[Asset]:
    """Read every non-hidden file under static_dir as an Asset bound for static/<rel>."""
    if not static_dir.is_dir():
        return []
    assets = []
    for p in sorted(static_dir.rglob('*')):
        rel = p.relative_to(static_dir)
        if not p.is_file() or any(part.startswith('.') for part in rel.parts):
            continue
        try:
            content = p.read_bytes()
        except OSError as e:
            raise RenderError(f"cannot read asset: {e}", f"{STATIC_PREFIX}/{rel.as_posix()}") from e
        assets.append(Asset(
            source=p,
            destination=f"{STATIC_PREFIX}/{rel.as_posix()}",
            content=content,
        ))
    return assets


def _read_resource(doc: Document, name: str) -> Callable[[], bytes]:
    def produce() -> bytes:
        try:
            return (doc.resource_dir / name).read_bytes()
        except OSError as e:
            raise RenderError(f"cannot read resource {name}: {e}", doc.identifier) from e
    return produce


def sitemap_xml(documents: Sequence[Document], site_url: str) -> bytes:
    """Minimal sitemap: the index plus one <url> per document, in identifier order."""
    base = site_url if site_url.endswith('/') else site_url + '/'
    documents = sorted(documents, key=lambda d: d.identifier)
    return _sitemap.render(base=base, documents=documents).encode("utf-8")


def _check_collisions(targets: list[Target]) -> None:
    """Reject duplicate paths and paths that would need an existing file as a directory."""
    claimed: dict[str, str] = {}
    for t in targets:
        if not is_safe_relative(t.path):
            raise OutputCollision(f"{t.origin} targets an unsafe path", t.path)
        if t.path in claimed:
            raise OutputCollision(f"claimed by both {claimed[t.path]} and {t.origin}", t.path)
        claimed[t.path] = t.origin
    for t in targets:
        for parent in PurePosixPath(t.path).parents:
            if str(parent) in claimed:
                raise OutputCollision(
                    f"{claimed[str(parent)]} is a file but {t.origin} needs it as a directory", str(parent)
                )


def plan_outputs(
    documents: Sequence[Document],
    assets: Sequence[Asset],
    renderer: Renderer,
    context: dict,
    index: bool = True,
    site_url: str = "/",
    ) -> list[Target]:
    """List every file the build will write. Raises OutputCollision before anything renders."""
    targets: list[Target] = []
    for doc in documents:
        targets.append(Target(doc.output_path, f"document {doc.identifier}",
                              lambda d=doc: renderer.render(d, context)))
        for name in doc.resources:
            targets.append(Target(f"{doc.identifier}/{name}", f"resource of {doc.identifier}",
                                  _read_resource(doc, name)))
    for asset in assets:
        targets.append(Target(asset.destination, f"asset {asset.source}", lambda a=asset: a.content))
    if index:
        targets.append(Target(INDEX_PATH, INDEX_IDENTIFIER,
                              lambda: renderer.render_index(documents, context)))
    targets.append(Target(SITEMAP_PATH, "sitemap", lambda: sitemap_xml(documents, site_url)))

    _check_collisions(targets)
    return targets


def _swap_into_place(staging: Path, output_dir: Path) -> None:
    old = output_dir.with_name(f".{output_dir.name}.old")
    if old.exists():
        shutil.rmtree(old)
    if output_dir.exists():
        output_dir.rename(old)
    try:
        staging.rename(output_dir)
    except OSError:
        if old.exists():
            old.rename(output_dir)
        raise
    if old.exists():
        shutil.rmtree(old)


def build_site(
    documents: Sequence[Document],
    assets: Sequence[Asset],
    renderer: Renderer,
    output_dir: Path,
    site_url: str = "/",
    site_name: str = "",
    index: bool = True,
    workers: int = 1,
    ) -> BuildOutput:
    """Render the whole site or nothing.

    Files are written to a sibling staging directory first; on any error it
    is removed and output_dir keeps its previous contents. Identical inputs
    give byte-identical trees.
    """
    context = {"site": {"name": site_name, "url": site_url}}
    targets = plan_outputs(documents, assets, renderer, context, index=index, site_url=site_url)

    output_dir = output_dir.resolve()
    staging = output_dir.with_name(f".{output_dir.name}.staging")
    try:
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)
    except OSError as e:
        raise RenderError(f"cannot create staging directory: {e}", str(output_dir)) from e

    try:
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                contents = list(pool.map(lambda t: t.produce(), targets))
        else:
            contents = [t.produce() for t in targets]

        records = []
        for target, data in zip(targets, contents):
            dest = staging / target.path
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                dest.write_bytes(data)
            except OSError as e:
                raise RenderError(f"cannot write output: {e}", target.path) from e
            records.append(FileRecord(path=target.path, size=len(data), sha256=sha256_bytes(data)))
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise

    try:
        _swap_into_place(staging, output_dir)
    except OSError as e:
        shutil.rmtree(staging, ignore_errors=True)
        raise RenderError(f"cannot replace output directory: {e}", str(output_dir)) from e
    logger.info("Built %d file(s) into %s", len(records), output_dir)
    return BuildOutput(root=output_dir, files=sorted(records, key=lambda r: r.path))
