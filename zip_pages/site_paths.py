from __future__ import annotations

import os
import re
import shutil
import uuid
from collections import deque
from pathlib import Path

ENTRY_POLICIES = ("search", "root")

# Version-control metadata and OS-generated clutter; removed wherever found.
TRASH_NAMES = frozenset(
    {
        ".git",
        ".svn",
        ".hg",
        ".gitmodules",
        "__MACOSX",
        ".DS_Store",
        "Thumbs.db",
        "desktop.ini",
    }
)

# Cloudflare Pages caps project names; repository names share the same identifier.
MAX_PROJECT_NAME = 58


class EntryDocumentMissing(ValueError):
    """Raised when the normalized tree has no entry document to publish."""


def normalize_slug(raw_slug: str) -> str:
    """
    Turn a user-supplied display name into a DNS- and repository-safe slug.

    - Lowercases
    - Replaces every character outside [a-z0-9] with a hyphen
    - Collapses repeated hyphens and strips them from both ends
    """
    slug = re.sub(r"[^a-z0-9]", "-", raw_slug.strip().lower())
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    if not slug:
        raise ValueError("Project name must contain at least one letter or digit.")
    return slug


def repo_name(raw_name: str, prefix: str = "site-") -> str:
    name = f"{prefix}{normalize_slug(raw_name)}"
    if len(name) > MAX_PROJECT_NAME:
        name = name[:MAX_PROJECT_NAME].rstrip("-")
    return name


def _remove(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def _park(directory: Path, parent: Path) -> Path:
    """Move a directory under parent with a unique name so none of its children collide with it."""
    return directory.rename(parent / f".hoist-{uuid.uuid4().hex}")


def _move_children(source: Path, dest: Path) -> None:
    # Sorted so that on a name collision the last child in name order wins.
    for path in sorted(source.iterdir(), key=lambda p: p.name):
        target = dest / path.name
        if target.exists() or target.is_symlink():
            _remove(target)
        path.replace(target)


def remove_trash(root: Path) -> list[Path]:
    """
    Delete version-control metadata and OS clutter anywhere under root.

    Deleted directories are pruned from the walk so it never descends into them.
    Returns the removed paths; a second run on the same tree removes nothing.
    """
    removed: list[Path] = []
    if not root.is_dir():
        return removed

    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        dirnames.sort()
        for name in [d for d in dirnames if d in TRASH_NAMES]:
            path = current / name
            if path.exists() or path.is_symlink():
                _remove(path)
                removed.append(path)
            dirnames.remove(name)
        for name in sorted(filenames):
            if name not in TRASH_NAMES:
                continue
            path = current / name
            if path.exists() or path.is_symlink():
                _remove(path)
                removed.append(path)
    return removed


def collapse_wrapper(root: Path) -> bool:
    """
    Collapse a single superfluous top-level folder into root.

    Only one level is collapsed. Returns True when a wrapper was removed.
    """
    entries = [p for p in root.iterdir() if p.name not in TRASH_NAMES]
    if len(entries) != 1:
        return False
    wrapper = entries[0]
    if wrapper.is_symlink() or not wrapper.is_dir():
        return False

    parked = _park(wrapper, root)
    _move_children(parked, root)
    parked.rmdir()
    return True


def find_site_root(root: Path, entry_document: str = "index.html") -> Path | None:
    """Breadth-first search for the shallowest directory holding the entry document."""
    queue: deque[Path] = deque([root])
    while queue:
        current = queue.popleft()
        if (current / entry_document).is_file():
            return current
        children = sorted(
            (p for p in current.iterdir() if p.is_dir() and not p.is_symlink() and p.name not in TRASH_NAMES),
            key=lambda p: p.name,
        )
        queue.extend(children)
    return None


def hoist_site_root(root: Path, entry_document: str = "index.html", policy: str = "search") -> Path:
    """
    Make sure the entry document sits directly under root.

    With policy "root" the document must already be there. With policy "search" the
    shallowest directory containing it becomes the new root and everything outside
    that directory is discarded.
    """
    if policy not in ENTRY_POLICIES:
        raise ValueError(f"Unknown entry policy: {policy!r}")

    if (root / entry_document).is_file():
        return root

    if policy == "root":
        raise EntryDocumentMissing(f"{entry_document} not found at the root of the archive.")

    site_root = find_site_root(root, entry_document)
    if site_root is None:
        raise EntryDocumentMissing(f"{entry_document} not found anywhere in the archive.")

    parked = _park(site_root, root)
    for path in list(root.iterdir()):
        if path != parked:
            _remove(path)
    _move_children(parked, root)
    parked.rmdir()
    return root


def normalize_tree(root: Path, entry_document: str = "index.html", policy: str = "search") -> Path:
    """
    Repair the layout of an extracted archive in place so it can be committed as-is.

    Removes trash, collapses one wrapping folder, then verifies (or, with the "search"
    policy, locates and hoists) the entry document. Raises EntryDocumentMissing when
    there is nothing publishable.
    """
    if not root.is_dir():
        raise FileNotFoundError(f"Extracted tree not found: {root}")

    remove_trash(root)
    collapse_wrapper(root)
    return hoist_site_root(root, entry_document=entry_document, policy=policy)
