"""Exceptions raised by the Folio pipeline.

Library code raises these and lets them propagate; only the CLI turns them
into a non-zero exit status.
"""

from __future__ import annotations

from pathlib import Path


class FolioError(Exception):
    """Base class for all Folio errors."""


class ContentRootError(FolioError):
    """The content root is missing or cannot be read."""


class DuplicateSlugError(FolioError):
    """Two content files resolve to the same slug.

    Attributes:
        slug: The colliding slug.
        url: URL both files map to.
        path: Web path of the file that was rejected.
        existing_path: Web path of the file that claimed the slug first.
    """

    def __init__(self, slug: str, url: str, path: str, existing_path: str):
        self.slug = slug
        self.url = url
        self.path = path
        self.existing_path = existing_path
        super().__init__(
            f"Duplicate URL {url}: {path} collides with {existing_path}"
        )


class BrokenImageError(FolioError):
    """A referenced image does not exist and strict image checking is on."""

    def __init__(self, page: str, src: str, resolved_path: Path):
        self.page = page
        self.src = src
        self.resolved_path = resolved_path
        super().__init__(f"Broken image in {page}: {src} (expected {resolved_path})")


class MissingTemplateError(FolioError):
    """The active theme lacks a template the pipeline cannot run without."""

    def __init__(self, name: str, theme_dir: Path | None = None):
        self.name = name
        self.theme_dir = theme_dir
        where = f" in {theme_dir}" if theme_dir else ""
        super().__init__(f"Missing required template: {name}.html{where}")


class RedirectValidationError(FolioError):
    """The redirect table contains invalid rules.

    Attributes:
        errors: Every validation message, in table order.
    """

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            "Redirect validation failed:\n" + "\n".join(f"  - {e}" for e in self.errors)
        )


class PreRenderError(FolioError):
    """A page failed to pre-render while strict pre-rendering is enabled."""

    def __init__(self, page_id: str, original_error: Exception):
        self.page_id = page_id
        self.original_error = original_error
        super().__init__(f"Failed to pre-render {page_id}: {original_error}")


class BuildError(FolioError):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")
