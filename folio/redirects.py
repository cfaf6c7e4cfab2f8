"""Redirect rules for Folio.

The redirect map lives in ``redirects.json`` (or ``redirects.yaml``) at the
project root and maps a root-absolute source path either to a target string
or to ``{"to": ..., "statusCode": ...}``. Keys starting with ``_`` are
comments.

Every build publishes the rules twice: as host-native declarations
(``_redirects`` and ``vercel.json``) and, for internal targets, as static
fallback pages for hosts that understand neither.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from .errors import RedirectValidationError
from .html_utils import escape_html
from .models import RedirectRule
from .utils import is_external_url

logger = logging.getLogger(__name__)

DEFAULT_STATUS_CODE = 301

REDIRECT_STATUS_CODES = {
    301: "Moved Permanently",
    302: "Found",
    303: "See Other",
    307: "Temporary Redirect",
    308: "Permanent Redirect",
}

REDIRECT_FILES = ("redirects.json", "redirects.yaml", "redirects.yml")


def load_redirects(project_root: Path) -> dict[str, Any] | None:
    """Read the redirect map from the project root.

    Returns:
        The raw mapping, or None if no redirect file exists.

    Raises:
        RedirectValidationError: The file cannot be parsed or is not a mapping.
    """
    for name in REDIRECT_FILES:
        path = project_root / name
        if not path.exists():
            continue
        text = path.read_text(encoding="utf-8")
        try:
            data = json.loads(text) if name.endswith(".json") else yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise RedirectValidationError([f"Cannot parse {name}: {exc}"]) from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise RedirectValidationError([f"{name} must contain a mapping of paths"])
        return data
    return None


def _domain_allowed(target: str, allowed_domains: Iterable[str]) -> bool:
    host = (urlparse(target).hostname or "").lower()
    for domain in allowed_domains:
        domain = str(domain).lower().lstrip(".")
        if host == domain or host.endswith("." + domain):
            return True
    return False


def parse_redirect_rules(
    data: dict[str, Any],
    allow_external: bool = False,
    allowed_domains: Iterable[str] = (),
) -> tuple[list[RedirectRule], list[str]]:
    """Validate a redirect map.

    Every invalid rule produces one error message; valid rules are returned
    in map order.

    Args:
        data: Source path to target string or ``{"to", "statusCode"}`` object.
        allow_external: Whether http(s) targets are accepted at all.
        allowed_domains: If non-empty, external targets must be on one of
            these hosts (or their subdomains).

    Returns:
        Tuple of (rules, error messages).

    Examples:
        >>> parse_redirect_rules({"/old/": "/new/"})
        ([RedirectRule(source='/old/', target='/new/', status_code=301)], [])
    """
    allowed_domains = list(allowed_domains or [])
    rules: list[RedirectRule] = []
    errors: list[str] = []

    for source, value in data.items():
        source = str(source)
        if source.startswith("_"):
            continue

        if not source.startswith("/"):
            errors.append(f'Invalid "from" path "{source}": must start with /')
            continue

        if isinstance(value, str):
            target, status = value, DEFAULT_STATUS_CODE
        elif isinstance(value, dict) and isinstance(value.get("to"), str) and value["to"]:
            target = value["to"]
            status = value.get("statusCode") or DEFAULT_STATUS_CODE
        else:
            errors.append(
                f'Invalid redirect rule for "{source}": '
                'must be string or object with "to" property'
            )
            continue

        if not target.startswith("/") and not is_external_url(target):
            errors.append(f'Invalid "to" path "{target}": must start with / or be absolute URL')
            continue

        try:
            status = int(status)
        except (TypeError, ValueError):
            status = -1
        if status not in REDIRECT_STATUS_CODES:
            errors.append(
                f'Invalid status code {value.get("statusCode")} for "{source}": '
                "must be 301, 302, 303, 307, or 308"
            )
            continue

        rule = RedirectRule(source=source, target=target, status_code=status)
        if rule.is_external:
            if not allow_external:
                errors.append(
                    f'External redirect "{source}" -> "{target}" is not allowed '
                    "(set allow_external_redirects: true)"
                )
                continue
            if allowed_domains and not _domain_allowed(target, allowed_domains):
                errors.append(
                    f'External redirect "{source}" -> "{target}": domain not in allowed_redirect_domains'
                )
                continue

        rules.append(rule)

    return rules, errors


def validate_redirects(data: dict[str, Any], config: dict[str, Any]) -> list[RedirectRule]:
    """Parse a redirect map with the site's policy, raising on any error.

    Raises:
        RedirectValidationError: At least one rule is invalid.
    """
    rules, errors = parse_redirect_rules(
        data,
        allow_external=bool(config.get("allow_external_redirects")),
        allowed_domains=config.get("allowed_redirect_domains") or [],
    )
    if errors:
        raise RedirectValidationError(errors)
    return rules


def netlify_redirects(rules: Iterable[RedirectRule]) -> str:
    lines = ["# Generated by folio", "# Format: from to status-code", ""]
    lines.extend(f"{rule.source} {rule.target} {rule.status_code}" for rule in rules)
    return "\n".join(lines) + "\n"


def vercel_config(rules: Iterable[RedirectRule]) -> str:
    config = {
        "redirects": [
            {
                "source": rule.source,
                "destination": rule.target,
                "permanent": rule.is_permanent,
                "statusCode": rule.status_code,
            }
            for rule in rules
        ]
    }
    return json.dumps(config, indent=2) + "\n"


def fallback_html(rule: RedirectRule) -> str:
    """Render a static page that redirects by meta refresh, script and link."""
    target = escape_html(rule.target)
    script_target = json.dumps(rule.target)
    moved = "permanently" if rule.is_permanent else "temporarily"
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <meta http-equiv="refresh" content="0; url={target}">
  <link rel="canonical" href="{target}">
  <title>Redirecting...</title>
  <script>window.location.replace({script_target});</script>
</head>
<body>
  <main>
    <h1>Redirecting...</h1>
    <p>This page has {moved} moved. If you are not automatically redirected, please click:</p>
    <p><a href="{target}">{target}</a></p>
    <p>{rule.status_code} - {REDIRECT_STATUS_CODES[rule.status_code]}</p>
  </main>
</body>
</html>
"""


def fallback_paths(output_dir: Path, source: str) -> list[Path]:
    """Return where the fallback page for a source path is written.

    ``/old/`` gets ``old/index.html``; ``/old`` gets both ``old.html`` and
    ``old/index.html``.
    """
    relative = source.strip("/")
    if source.endswith("/"):
        return [output_dir / relative / "index.html"]
    return [output_dir / f"{relative}.html", output_dir / relative / "index.html"]


def write_redirects(
    rules: list[RedirectRule], output_dir: Path, occupied_urls: Iterable[str] = ()
) -> tuple[int, int]:
    """Write host redirect files and fallback pages.

    A fallback is skipped with a warning if a page already exists at any of
    its locations, or if an entry is published at its URL later in the
    build; existing files are never overwritten.

    Returns:
        Tuple of (fallback files written, rules skipped because of a conflict).
    """
    (output_dir / "_redirects").write_text(netlify_redirects(rules), encoding="utf-8")
    (output_dir / "vercel.json").write_text(vercel_config(rules), encoding="utf-8")

    occupied = {url.strip("/") for url in occupied_urls}
    written = skipped = 0
    for rule in rules:
        if rule.is_external:
            continue
        if rule.source.strip("/") == "":
            logger.warning("Redirect conflict: %s would replace the home page, skipping", rule.source)
            skipped += 1
            continue
        paths = fallback_paths(output_dir, rule.source)
        if rule.source.strip("/") in occupied or any(path.exists() for path in paths):
            logger.warning("Redirect conflict: %s - path already exists, skipping", rule.source)
            skipped += 1
            continue
        html = fallback_html(rule)
        for path in paths:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(html, encoding="utf-8")
            written += 1
    return written, skipped


def match_redirect(rules: Iterable[RedirectRule], path: str) -> RedirectRule | None:
    """Find the rule for a request path, ignoring a trailing slash difference."""
    normalized = path.rstrip("/") or "/"
    for rule in rules:
        if (rule.source.rstrip("/") or "/") == normalized:
            return rule
    return None
