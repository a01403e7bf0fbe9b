"""Shared fixtures for core unit tests"""

import datetime
from pathlib import Path

import pytest

from sitepub.core.models import Document, DocumentMeta
from sitepub.exceptions import RenderError


class EchoRenderer:
    """Deterministic stand-in for a template engine."""

    def __init__(self, fail_on: str = None):
        self.fail_on = fail_on

    def render(self, document, context):
        if document.identifier == self.fail_on:
            raise RenderError("boom", document.identifier)
        return f"<h1>{document.meta.title}</h1>{context['site']['name']}".encode()

    def render_index(self, documents, context):
        return ",".join(d.identifier for d in documents).encode()


@pytest.fixture(name="make_doc")
def make_doc_fixture():
    """Return a factory for in-memory Documents."""
    def make(identifier: str, title: str = None, date: str = "2025-02-23", body: str = "Body.\n",
             source: Path = None, resources: tuple = (), **meta) -> Document:
        return Document(
            identifier=identifier,
            source=source or Path(f"/nonexistent/{identifier}.md"),
            meta=DocumentMeta(title=title or identifier.title(), date=datetime.date.fromisoformat(date), **meta),
            body=body,
            resources=resources,
        )
    return make


@pytest.fixture(name="echo_renderer")
def echo_renderer_fixture():
    return EchoRenderer


@pytest.fixture(name="docs")
def docs_fixture(make_doc):
    return [
        make_doc("posts/rust-errors", "Error handling in Rust", "2025-02-23"),
        make_doc("lectures/deployment", "Deployment platforms", "2025-06-08"),
    ]
