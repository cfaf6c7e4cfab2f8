"""Template rendering engine for Folio.

This module uses Jinja2 to render the active theme's templates. A theme is
a directory of ``<name>.html`` templates (plus optional ``partials/``,
``robots.txt`` and ``llms.txt``) next to its static assets.

Key class:
- TemplateEngine: Loads a theme, checks its mandatory templates and renders
  templates by name.

Key functions:
- resolve_theme_dir: Find a theme in the project or among the built-in ones.
- select_template: Pick the template for an entry using its fallback chain.
- render_toc: Render a TOC tree as nested HTML lists.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from jinja2 import (
    Environment,
    FileSystemLoader,
    TemplateSyntaxError,
    select_autoescape,
)
from markupsafe import Markup
from pygments.formatters import HtmlFormatter

from .errors import BuildError, MissingTemplateError
from .html_utils import escape_html, join_root_url
from .models import Entry, TocNode

logger = logging.getLogger(__name__)

BUILTIN_THEMES_DIR = Path(__file__).parent / "themes"
DEFAULT_THEME = "default"
REQUIRED_TEMPLATES = ("index", "entry")

# Template fallback chain of each taxonomy's term pages
TAXONOMY_TEMPLATE_CHAINS = {
    "tags": ("tag", "index"),
    "categories": ("category", "tag", "index"),
    "series": ("series", "tag", "index"),
}


def resolve_theme_dir(project_root: Path, theme: str | None) -> Path:
    """Return the directory of the named theme.

    ``templates/<theme>/`` in the project wins over a built-in theme of the
    same name; an unknown name falls back to the built-in default theme.
    """
    name = theme or DEFAULT_THEME
    for candidate in (project_root / "templates" / name, BUILTIN_THEMES_DIR / name):
        if candidate.is_dir():
            return candidate
    logger.warning("Theme '%s' not found, using the default theme", name)
    return BUILTIN_THEMES_DIR / DEFAULT_THEME


def select_template(entry: Entry, templates: Iterable[str], fallback: str = "entry") -> str | None:
    """Pick the template name for an entry.

    The chain is: the front-matter ``template`` name, the entry's section
    name, ``index`` for the root index entry, the fallback name, then
    ``entry``, ``page`` and ``index``.

    Examples:
        >>> e = Entry(slug="docs/intro", url="/docs/intro/", title="Intro",
        ...           created_at="2024-01-01", updated_at="2024-01-01",
        ...           type="markdown", html="", filename="docs/intro.md",
        ...           section="docs")
        >>> select_template(e, {"index", "entry", "docs"})
        'docs'
    """
    available = set(templates)
    explicit = entry.front_matter.get("template")
    candidates = []
    if isinstance(explicit, str):
        candidates.append(explicit)
    if entry.section:
        candidates.append(entry.section)
    if entry.slug == "index":
        candidates.append("index")
    candidates.extend([fallback, "entry", "page", "index"])
    for name in candidates:
        if name in available:
            return name
    return None


def render_toc(toc: list[TocNode]) -> Markup:
    """Render a table of contents as nested HTML.

    Generates ``<ul><li><a href="#id">text</a>...</li></ul>``, one list per
    level of the tree.

    Args:
        toc: Root nodes of a TOC tree.

    Returns:
        Markup-safe HTML, or empty Markup if there are no nodes.
    """
    if not toc:
        return Markup("")
    parts = ["<ul>"]
    for node in toc:
        parts.append(f'<li><a href="#{escape_html(node.slug)}">{escape_html(node.content)}</a>')
        if node.children:
            parts.append(render_toc(node.children))
        parts.append("</li>")
    parts.append("</ul>")
    return Markup("".join(parts))


class TemplateEngine:
    """Template rendering engine using Jinja2.

    Attributes:
        theme_dir: Directory of the active theme.
        site: Site configuration, available to every template as ``site``.
        env: Jinja2 environment.
        templates: Names of the theme's page templates (``<name>.html``).
    """

    def __init__(self, theme_dir: Path, site: dict[str, Any]):
        """Initialize the template engine.

        Args:
            theme_dir: Theme directory.
            site: Site configuration.

        Raises:
            MissingTemplateError: The theme lacks ``index.html`` or ``entry.html``.
        """
        self.theme_dir = theme_dir
        self.site = site
        self.env = Environment(
            loader=FileSystemLoader([theme_dir, theme_dir / "partials"]),
            autoescape=select_autoescape(["html", "xml"]),
        )
        self.templates = frozenset(
            path.stem for path in theme_dir.glob("*.html") if not path.name.startswith("_")
        )
        for name in REQUIRED_TEMPLATES:
            if name not in self.templates:
                raise MissingTemplateError(name, theme_dir)
        self._install_globals()

    def _install_globals(self) -> None:
        """Install global variables and functions in the Jinja environment."""
        self.env.globals["site"] = self.site
        self.env.globals["url_for"] = self._url_for
        self.env.globals["render_toc"] = render_toc
        self.env.globals["pygments_css"] = self._pygments_css

    @staticmethod
    def _pygments_css() -> str:
        """Return Pygments CSS styles for the .highlight class."""
        return HtmlFormatter().get_style_defs(".highlight")

    def _url_for(self, path: str) -> str:
        """Return an absolute URL for a site path using the configured site URL."""
        if path.startswith(("http://", "https://", "//")):
            return path
        return join_root_url(str(self.site.get("url") or ""), path)

    def has(self, name: str) -> bool:
        return name in self.templates

    def select(self, entry: Entry, fallback: str = "entry") -> str:
        """Return the template name for an entry; see ``select_template``."""
        return select_template(entry, self.templates, fallback) or "entry"

    def first_available(self, names: Iterable[str]) -> str:
        for name in names:
            if name in self.templates:
                return name
        return "index"

    def render(self, name: str, context: dict[str, Any], source: str | Path = "") -> str:
        """Render a page template.

        Args:
            name: Template name without ``.html``.
            context: Variables for the template.
            source: Content file (or page id) the render is for, used in errors.

        Raises:
            BuildError: The template failed to compile or render.
        """
        return self._render_file(f"{name}.html", context, source)

    def render_optional(self, filename: str, context: dict[str, Any]) -> str | None:
        """Render a theme file such as ``robots.txt`` if the theme ships one."""
        if not (self.theme_dir / filename).is_file():
            return None
        return self._render_file(filename, context, filename)

    def _render_file(self, filename: str, context: dict[str, Any], source: str | Path) -> str:
        source_path = Path(str(source or filename))
        try:
            return self.env.get_template(filename).render(**context)
        except TemplateSyntaxError as exc:
            raise BuildError(
                source_path,
                f"Template syntax error in {exc.name or filename} on line {exc.lineno}: {exc.message}",
                exc,
            ) from exc
        except Exception as exc:
            raise BuildError(source_path, _format_error_message(exc), exc) from exc


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message."""
    error_type = type(exc).__name__
    error_msg = str(exc)
    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    if error_type == "TypeError":
        return f"Type error: {error_msg}"
    if error_type == "AttributeError":
        return f"Attribute error: {error_msg}"
    return f"{error_type}: {error_msg}"
