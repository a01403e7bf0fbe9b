"""Root test configuration: a sample site tree and session-level cleanup"""

import os
import shutil
from pathlib import Path

import pytest


_PROJECT_ROOT = Path(__file__).parent.parent

_CLEANUP_FILES = ["sitepub.db"]
_CLEANUP_DIRS = [".sitepub"]


PAGE_HTML = """\
<!doctype html>
<html>
<head>
<title>{{ page.title }} | {{ site.name }}</title>
<script src="/static/script/app.js"></script>
</head>
<body>
<h1>{{ page.title }}</h1>
<time>{{ page.date | format_date }}</time>
{% if page.description %}
<p class="lead">{{ page.description }}</p>
{% endif %}
{{ page.content }}
</body>
</html>
"""

INDEX_HTML = """\
<ul>
{% for p in pages %}
<li><a href="{{ site.url }}{{ p.path }}">{{ p.title }}</a> {{ p.date | format_date }}</li>
{% endfor %}
</ul>
"""

RUST_POST = """\
---
title: Error handling in Rust
date: 2025-02-23
description: Result, the question mark and friends
---

# Errors

Use `Result<T, E>`.

![diagram](diagram.png)
"""

LECTURE = """\
+++
title = "Deployment platforms"
date = 2025-06-08

[extra]
course = "SWE"
tags = ["paas", "ci"]
+++

# Lecture

| platform | kind |
|----------|------|
| pages    | static |
"""


@pytest.fixture(scope="session", autouse=True)
def cleanup_artifacts():
    """Remove DB files and working directories created during the test session."""
    yield
    for name in _CLEANUP_FILES:
        p = _PROJECT_ROOT / name
        if p.exists():
            p.unlink()
    for name in _CLEANUP_DIRS:
        p = _PROJECT_ROOT / name
        if p.exists():
            shutil.rmtree(p)


@pytest.fixture(name="write_doc")
def write_doc_fixture(tmp_path):
    """Return a helper writing content/<rel> with the given text."""
    def write(rel: str, text: str) -> Path:
        path = tmp_path / "content" / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path
    return write


@pytest.fixture(name="site_tree")
def site_tree_fixture(tmp_path, monkeypatch, write_doc):
    """A complete source tree (content, templates, static) with cwd set to its root."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("SITEPUB_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("SITEPUB_DB_URL", f"sqlite:///{tmp_path}/sitepub.db")

    write_doc("posts/rust-errors/index.md", RUST_POST)
    (tmp_path / "content" / "posts" / "rust-errors" / "diagram.png").write_bytes(b"\x89PNG fake")
    write_doc("lectures/deployment.md", LECTURE)

    templates = tmp_path / "templates"
    templates.mkdir()
    (templates / "page.html").write_text(PAGE_HTML)
    (templates / "index.html").write_text(INDEX_HTML)

    script = tmp_path / "static" / "script"
    script.mkdir(parents=True)
    (script / "app.js").write_text("console.log('app');\n")
    return tmp_path
