from __future__ import annotations

import re
import shutil
import zipfile
from pathlib import Path

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:/")


class ArchiveError(ValueError):
    """Raised when an uploaded archive is corrupt, unsupported, or unsafe to extract."""


def _is_symlink(info: zipfile.ZipInfo) -> bool:
    # Unix mode lives in the high 16 bits of external_attr.
    unix_mode = (info.external_attr >> 16) & 0xFFFF
    return (unix_mode & 0o170000) == 0o120000


def _validate_member(info: zipfile.ZipInfo) -> None:
    name = info.filename
    if "\x00" in name:
        raise ArchiveError(f"Null byte in archive entry: {name!r}")
    normalized = name.replace("\\", "/")
    if normalized.startswith("/") or _DRIVE_PREFIX.match(normalized):
        raise ArchiveError(f"Absolute path not allowed in archive: {name}")
    if ".." in normalized.split("/"):
        raise ArchiveError(f"Directory traversal not allowed in archive: {name}")
    if _is_symlink(info):
        raise ArchiveError(f"Symlinks not allowed in archive: {name}")


def extract_archive(archive_path: Path, dest: Path) -> Path:
    """
    Extract a .zip upload into dest, replacing anything already there.

    Every entry is validated before anything is written.
    """
    if not archive_path.is_file():
        raise ArchiveError(f"Archive not found: {archive_path}")

    if dest.exists():
        shutil.rmtree(dest)
    dest.mkdir(parents=True)

    try:
        with zipfile.ZipFile(archive_path) as zf:
            members = zf.infolist()
            for info in members:
                _validate_member(info)
            zf.extractall(dest, members=members)
    except zipfile.BadZipFile as exc:
        raise ArchiveError(f"Could not read archive: {exc}") from exc
    except NotImplementedError as exc:
        # Unsupported compression method.
        raise ArchiveError(f"Unsupported archive: {exc}") from exc

    return dest
