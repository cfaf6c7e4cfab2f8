"""Folio static site engine.

This package turns a folder of Markdown, text and HTML files into a static
site. It runs in two modes that share one content pipeline:

- Batch build: load every entry once and emit a deployable output tree
  (pages, listings, taxonomy pages, feeds, redirects, image variants and
  compressed copies).
- Live server: keep the entry set in memory, re-derive it when content
  changes and serve cached renders.

The main entry point is the CLI module, which provides the ``build`` and
``serve`` commands.
"""

__all__ = ["__version__"]
__version__ = "0.3.0"
