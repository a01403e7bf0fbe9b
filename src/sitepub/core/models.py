"""Data models shared by the fetch, load, build, package and publish stages"""

import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sitepub.core.utils.hashing import sha256


class DocumentMeta(BaseModel):
    """Validated front matter. Unknown top-level keys are rejected."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    title:       str
    date:        datetime.date
    description: Optional[str] = None
    extra:       dict[str, Any] = Field(default_factory=dict)
    slug:        Optional[str] = None
    draft:       bool = False
    template:    Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def _calendar_date(cls, value: Any) -> Any:
        """Accept ISO strings, dates and datetimes (truncated); refuse numbers."""
        if isinstance(value, datetime.datetime):
            return value.date()
        if isinstance(value, datetime.date):
            return value
        if isinstance(value, str):
            return datetime.date.fromisoformat(value.strip())
        raise ValueError(f"expected an ISO calendar date, got {type(value).__name__}")

    @field_validator("title")
    @classmethod
    def _non_empty_title(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title must not be empty")
        return value


def resource_dir(source: Path) -> Path:
    """Bundle directory for 'dir/index.md', otherwise the adjacent 'dir/name/' folder."""
    return source.parent if source.stem == "index" else source.with_suffix("")


class Document(BaseModel):
    """One content unit; immutable once loaded."""
    model_config = ConfigDict(frozen=True)

    identifier: str                 # '/'-separated, no suffix, e.g. 'posts/rust-errors'
    source:     Path
    meta:       DocumentMeta
    body:       str                 # markdown without front matter
    resources:  tuple[str, ...] = ()  # bundle files relative to the document directory

    @property
    def output_path(self) -> str:
        return f"{self.identifier}/index.html"

    @property
    def resource_dir(self) -> Path:
        return resource_dir(self.source)

    @property
    def url_path(self) -> str:
        return f"{self.identifier}/"


class Asset(BaseModel):
    """A static file destined for the output tree."""
    model_config = ConfigDict(frozen=True)

    source:      Path
    destination: str
    content:     bytes


class CopyRule(BaseModel):
    source:      str    # path inside the package, e.g. 'dist/js/bootstrap.min.js'
    destination: str    # path relative to the source tree, e.g. 'static/script/bootstrap.min.js'


class ManifestEntry(BaseModel):
    """One pinned external package and the files copied out of it."""
    name:    str
    version: str
    copies:  list[CopyRule]


class FileRecord(BaseModel):
    path:   str
    size:   int
    sha256: str


class BuildOutput(BaseModel):
    """Generated tree plus a sorted manifest of every produced file."""
    root:  Path
    files: list[FileRecord]

    @property
    def digest(self) -> str:
        """Hash over the manifest; equal digests mean byte-identical trees."""
        return sha256("\n".join(f"{f.path}\0{f.sha256}" for f in self.files))


class Artifact(BaseModel):
    """Immutable packaged snapshot of a build output, addressed by content hash."""
    model_config = ConfigDict(frozen=True)

    id:    str
    path:  Path
    files: list[FileRecord]
    size:  int


class PublishResult(BaseModel):
    deployment:  int
    artifact_id: str
    url:         str
