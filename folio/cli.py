"""Command-line interface for Folio.

This module defines the CLI commands using Click framework.
It provides commands for creating new projects, building sites, and running the development server.

Commands:
- new: Scaffold a new Folio project.
- build: Build the site into the output directory.
- serve: Run development server with live reload.
- validate: Check the redirect map without building.
- clean: Remove the output and cache directories.
"""

from __future__ import annotations

import logging
import shutil
from datetime import date
from pathlib import Path
from typing import NoReturn

import click

from . import __version__
from .errors import BuildError, FolioError, RedirectValidationError

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

_SCAFFOLD_CONFIG = """title: {title}
description: A new folio site
url: https://example.com
author: Anonymous
"""

_SCAFFOLD_POST = """---
title: Hello World
tags: [welcome]
---

# Hello World

Welcome to your new folio site. Edit `content/posts/{day}-hello-world.md`
or add more Markdown files under `content/`.
"""


@click.group()
@click.version_option(version=__version__, prog_name="folio")
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """Folio static site engine."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


def _configure_logging(project_root: Path, verbose: bool) -> None:
    """Configure the root logger from --verbose or the project's log_level."""
    from .build import load_config

    level_name = "DEBUG" if verbose else str(load_config(project_root).get("log_level", "INFO"))
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _fail(exc: FolioError, project_root: Path) -> NoReturn:
    """Print a styled error and exit with status 1."""
    if isinstance(exc, BuildError):
        try:
            rel_path = exc.source_path.relative_to(project_root)
        except ValueError:
            rel_path = exc.source_path
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        click.echo(click.style(f"  File: {rel_path}", fg="yellow"), err=True)
        click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)
    elif isinstance(exc, RedirectValidationError):
        click.echo(click.style("Invalid redirects:", fg="red", bold=True), err=True)
        for message in exc.errors:
            click.echo(click.style(f"  - {message}", fg="yellow"), err=True)
    else:
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        click.echo(click.style(f"  {exc}", fg="white"), err=True)
    raise SystemExit(1) from None


@cli.command()
@click.argument("name")
def new(name: str):
    """Scaffold a new Folio project."""
    target = Path(name).resolve()
    if target.exists() and any(target.iterdir()):
        raise click.ClickException(
            f"Refusing to initialize into non-empty directory: {target}"
        )
    _scaffold(target)
    click.echo(f"New folio site created at {target}")


@cli.command()
@click.pass_context
def build(ctx: click.Context):
    """Build the site into the output directory."""
    project_root = Path.cwd()
    _configure_logging(project_root, ctx.obj["verbose"])
    from .build import build_site

    try:
        result = build_site(project_root)
    except FolioError as exc:
        _fail(exc, project_root)
    click.echo(
        click.style("Built ", fg="green")
        + f"{len(result.entries)} entries ({result.pages_written} pages) into {result.output_dir}"
    )
    if result.images.processed or result.images.failed:
        click.echo(
            f"Images: {result.images.processed} optimized, "
            f"{result.images.skipped} up to date, {result.images.failed} failed"
        )
    if result.redirects_skipped:
        click.echo(
            click.style(f"{result.redirects_skipped} redirect fallbacks skipped", fg="yellow")
        )


@cli.command()
@click.option(
    "--port",
    type=int,
    required=False,
    help="Port to run the dev server (overrides folio.yaml)",
)
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for the live reload websocket server (overrides folio.yaml ws_port)",
)
@click.pass_context
def serve(ctx: click.Context, port: int | None, ws_port: int | None):
    """Run dev server with live reload."""
    project_root = Path.cwd()
    _configure_logging(project_root, ctx.obj["verbose"])
    from .server import DevServer

    server = DevServer(project_root, http_port=port, ws_port=ws_port)
    try:
        server.start()
    except FolioError as exc:
        _fail(exc, project_root)


@cli.command()
@click.pass_context
def validate(ctx: click.Context):
    """Check the redirect map without building."""
    project_root = Path.cwd()
    _configure_logging(project_root, ctx.obj["verbose"])
    from .build import load_config, load_redirect_rules

    try:
        rules = load_redirect_rules(project_root, load_config(project_root))
    except FolioError as exc:
        _fail(exc, project_root)
    if rules is None:
        click.echo("No redirect map found")
        return
    click.echo(click.style("OK ", fg="green") + f"{len(rules)} redirect rules are valid")


@cli.command()
@click.pass_context
def clean(ctx: click.Context):
    """Remove the output and cache directories."""
    project_root = Path.cwd()
    _configure_logging(project_root, ctx.obj["verbose"])
    from .build import load_config

    config = load_config(project_root)
    for key in ("output_dir", "cache_dir"):
        path = project_root / config[key]
        if path.exists():
            shutil.rmtree(path)
            click.echo(f"Removed {path}")


def main():
    """Entry point for the CLI application."""
    cli()


def _scaffold(root: Path) -> None:
    """Create the directory structure and files for a new Folio project.

    Args:
        root: Root directory for the new project.
    """
    today = date.today().isoformat()
    posts = root / "content" / "posts"
    posts.mkdir(parents=True, exist_ok=True)
    (root / "folio.yaml").write_text(
        _SCAFFOLD_CONFIG.format(title=root.name), encoding="utf-8"
    )
    (posts / f"{today}-hello-world.md").write_text(
        _SCAFFOLD_POST.format(day=today), encoding="utf-8"
    )
    (root / ".gitignore").write_text("build/\n.cache/\n", encoding="utf-8")
