"""Navigation tree for Folio.

Mirrors the physical folder layout of the content root. Folder nodes keep
the folder name verbatim; file nodes show the entry's resolved title. Only
folders that contain at least one loaded entry appear.
"""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Mapping

from .models import Entry, NavNode
from .utils import path_hash

logger = logging.getLogger(__name__)


def _folder_title(part: str, folder_path: str) -> str:
    if part in (".", "..") or not part.strip():
        title = f"folder-{path_hash(folder_path)}"
        logger.warning("Folder has no usable name: %s, using %s", folder_path, title)
        return title
    return part


def _file_title(entry: Entry) -> str:
    if entry.title and entry.title.strip():
        return entry.title
    return posixpath.basename(entry.filename)


def build_navigation(entries: Mapping[str, Entry], mode: str = "structured") -> list[NavNode]:
    """Build the navigation tree from loaded entries.

    Args:
        entries: Entries keyed by slug, in discovery order.
        mode: "flat" disables navigation entirely.

    Returns:
        Top-level navigation nodes. The root ``index`` entry is not listed.
    """
    if mode == "flat":
        return []

    root = NavNode(kind="folder", title="")
    folders: dict[str, NavNode] = {"": root}

    for slug, entry in entries.items():
        if slug == "index":
            continue
        directory = posixpath.dirname(entry.filename)
        parent = root
        current = ""
        for part in [p for p in directory.split("/") if p]:
            current = f"{current}/{part}" if current else part
            folder = folders.get(current)
            if folder is None:
                folder = NavNode(kind="folder", title=_folder_title(part, current))
                folders[current] = folder
                parent.children.append(folder)
            parent = folder
        parent.children.append(NavNode(kind="file", title=_file_title(entry), url=entry.url))

    return root.children
