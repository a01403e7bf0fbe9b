"""Rendering capability: Document -> HTML bytes, with a Jinja2 + markdown-it implementation"""

import datetime
from pathlib import Path
from typing import Any, Protocol, Sequence

import jinja2
from markdown_it import MarkdownIt
from markupsafe import Markup

from sitepub.core.models import Document
from sitepub.exceptions import RenderError


PAGE_TEMPLATE = "page.html"
INDEX_TEMPLATE = "index.html"
INDEX_IDENTIFIER = "<index>"


class Renderer(Protocol):
    """Anything that can turn documents into HTML. Must be pure and deterministic."""

    def render(self, document: Document, context: dict[str, Any]) -> bytes: ...

    def render_index(self, documents: Sequence[Document], context: dict[str, Any]) -> bytes: ...


def format_date(value: datetime.date, fmt: str = "%Y-%m-%d") -> str:
    return value.strftime(fmt)


def make_markdown() -> MarkdownIt:
    """CommonMark with GFM tables and strikethrough; raw HTML passes through."""
    return MarkdownIt("commonmark").enable(["table", "strikethrough"])


class JinjaRenderer:
    """Renders page.html (or the document's own template) and index.html from a template directory."""

    def __init__(self, template_dir: Path, default_template: str = PAGE_TEMPLATE):
        self.template_dir = template_dir
        self.default_template = default_template
        self.md = make_markdown()
        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir)),
            autoescape=jinja2.select_autoescape(["html", "htm", "xml"]),
            undefined=jinja2.StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self.env.filters["format_date"] = format_date

    def _page(self, document: Document) -> dict[str, Any]:
        meta = document.meta
        return {
            "identifier":  document.identifier,
            "path":        document.url_path,
            "title":       meta.title,
            "date":        meta.date,
            "description": meta.description,
            "extra":       meta.extra,
            "resources":   list(document.resources),
        }

    def _render(self, template_name: str, identifier: str, context: dict[str, Any]) -> bytes:
        try:
            template = self.env.get_template(template_name)
            return template.render(**context).encode("utf-8")
        except jinja2.TemplateNotFound as e:
            raise RenderError(f"template not found: {e.name}", identifier) from e
        except jinja2.TemplateSyntaxError as e:
            raise RenderError(f"template syntax error in {e.name}:{e.lineno}: {e.message}", identifier) from e
        except jinja2.UndefinedError as e:
            raise RenderError(f"undefined in {template_name}: {e.message}", identifier) from e
        except (jinja2.TemplateError, TypeError, ValueError) as e:
            raise RenderError(f"{template_name}: {e}", identifier) from e

    def render(self, document: Document, context: dict[str, Any]) -> bytes:
        page = self._page(document)
        page["content"] = Markup(self.md.render(document.body))
        template_name = document.meta.template or self.default_template
        return self._render(template_name, document.identifier, {**context, "page": page})

    def render_index(self, documents: Sequence[Document], context: dict[str, Any]) -> bytes:
        """Index lists documents newest first."""
        pages = [self._page(d) for d in sorted(documents, key=lambda d: (d.meta.date, d.identifier), reverse=True)]
        return self._render(INDEX_TEMPLATE, INDEX_IDENTIFIER, {**context, "pages": pages})
