"""Content loading: document discovery, front matter parsing and validation"""

import logging
import re
import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from sitepub.core.models import Document, DocumentMeta, resource_dir
from sitepub.core.utils.slug import slug_component
from sitepub.exceptions import DuplicateIdentifier, MetadataInvalid


logger = logging.getLogger(__name__)

YAML_FRONTMATTER_RE = re.compile(r'^---[ \t]*\n(.*?)\n---[ \t]*(?:\n|$)', re.DOTALL)
TOML_FRONTMATTER_RE = re.compile(r'^\+\+\+[ \t]*\n(.*?)\n\+\+\+[ \t]*(?:\n|$)', re.DOTALL)
MD_EXTENSIONS = {'.md'}
BUNDLE_INDEX = 'index'


def split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """Return (front_matter, body). Accepts a YAML '---' or TOML '+++' header."""
    text = text.replace('\r\n', '\n').lstrip('\ufeff')
    if m := YAML_FRONTMATTER_RE.match(text):
        try:
            fm = yaml.safe_load(m.group(1)) or {}
        except (yaml.YAMLError, ValueError) as e:  # PyYAML raises ValueError for impossible dates
            raise MetadataInvalid(f"invalid YAML front matter: {e}") from e
    elif m := TOML_FRONTMATTER_RE.match(text):
        try:
            fm = tomllib.loads(m.group(1))
        except tomllib.TOMLDecodeError as e:
            raise MetadataInvalid(f"invalid TOML front matter: {e}") from e
    else:
        raise MetadataInvalid("missing front matter block")
    if not isinstance(fm, dict):
        raise MetadataInvalid(f"front matter must be a mapping, got {type(fm).__name__}")
    return fm, text[m.end():]


def discover_files(root: Path) -> list[Path]:
    """Return sorted document files under root; '_'-prefixed files are section data and skipped."""
    if root.is_file():
        return [root] if root.suffix in MD_EXTENSIONS else []
    return sorted(
        p for p in root.rglob('*')
        if p.is_file() and p.suffix in MD_EXTENSIONS and not p.name.startswith('_')
    )


def derive_identifier(rel: Path, slug: str = None) -> str:
    """Map a content-relative path to its identifier; 'a/b/index.md' names the bundle 'a/b'."""
    parts = list(rel.with_suffix('').parts)
    if len(parts) > 1 and parts[-1] == BUNDLE_INDEX:
        parts.pop()
    if slug:
        parts[-1] = slug
    parts = [slug_component(p) for p in parts]
    if not all(parts):
        raise MetadataInvalid(f"cannot derive an identifier from {rel.as_posix()}")
    return '/'.join(parts)


def _resources(path: Path) -> tuple[str, ...]:
    """Non-document files travelling with a document.

    A bundle ('dir/index.md') owns the other files under its directory; a plain
    document ('dir/name.md') owns the files under an adjacent 'dir/name/' folder.
    Subfolders are included unless they hold documents of their own or belong
    to a sibling document. Names are POSIX paths relative to the folder.
    """
    folder = resource_dir(path)
    if not folder.is_dir():
        return ()
    found: list[str] = []

    def walk(d: Path, top: bool) -> None:
        entries = sorted(p for p in d.iterdir() if not p.name.startswith('.'))
        if not top and any(p.is_file() and p.suffix in MD_EXTENSIONS for p in entries):
            return
        for p in entries:
            if p.is_dir():
                # a sibling 'name.md' owns 'name/'
                if not any((d / f"{p.name}{ext}").is_file() for ext in MD_EXTENSIONS):
                    walk(p, False)
            elif p.is_file() and p.suffix not in MD_EXTENSIONS:
                found.append(p.relative_to(folder).as_posix())

    walk(folder, True)
    return tuple(sorted(found))


def _validation_message(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = '.'.join(str(x) for x in err['loc']) or 'front matter'
        parts.append(f"{loc}: {err['msg']}")
    return '; '.join(parts)


def load_document(path: Path, root: Path) -> Document:
    """Parse and validate a single document file."""
    rel = path.relative_to(root) if path != root else Path(path.name)
    ident = rel.as_posix()
    try:
        fm, body = split_front_matter(path.read_text(encoding='utf-8'))
    except MetadataInvalid as e:
        raise MetadataInvalid(e.message, ident) from e
    except (OSError, UnicodeDecodeError) as e:
        raise MetadataInvalid(f"unreadable: {e}", ident) from e

    try:
        meta = DocumentMeta.model_validate(fm)
    except ValidationError as e:
        raise MetadataInvalid(_validation_message(e), ident) from e

    try:
        identifier = derive_identifier(rel, meta.slug)
    except MetadataInvalid as e:
        raise MetadataInvalid(e.message, ident) from e

    return Document(
        identifier=identifier,
        source=path,
        meta=meta,
        body=body,
        resources=() if len(rel.parts) == 1 and rel.stem == BUNDLE_INDEX else _resources(path),
    )


def load_documents(root: Path, include_drafts: bool = False) -> list[Document]:
    """Load every document under root, sorted by (date, identifier).

    Any invalid document or identifier clash aborts the whole load.
    """
    if not root.exists():
        raise MetadataInvalid("content directory does not exist", str(root))

    docs: dict[str, Document] = {}
    for path in discover_files(root):
        doc = load_document(path, root)
        if doc.meta.draft and not include_drafts:
            logger.info("Skipping draft %s", doc.identifier)
            continue
        if other := docs.get(doc.identifier):
            raise DuplicateIdentifier(
                f"derived from both {other.source.relative_to(root).as_posix()} "
                f"and {path.relative_to(root).as_posix()}",
                doc.identifier,
            )
        docs[doc.identifier] = doc
        logger.debug("Loaded %s from %s", doc.identifier, path)

    return sorted(docs.values(), key=lambda d: (d.meta.date, d.identifier))
