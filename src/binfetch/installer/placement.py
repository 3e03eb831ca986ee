from __future__ import annotations

import io
import logging
import lzma
import os
import shutil
import stat
import tarfile
import tempfile
import time
import zipfile
import zlib
from pathlib import Path
from typing import Callable

from binfetch.common.errors import MalformedArchive
from binfetch.common.manifest_security import validate_archive_member_path
from binfetch.common.types import ArchiveFormat


log = logging.getLogger(__name__)

TEMP_SUFFIX = ".binfetch-tmp"
EXECUTABLE_MODE = 0o755
STALE_TEMP_SECONDS = 6 * 60 * 60
METAFILE_PREFIXES = ("README", "LICENSE", "LICENCE", "COPYING", "CHANGELOG", "NOTICE", "AUTHORS")

_TAR_MODES = {
    ArchiveFormat.TAR_GZ: "r:gz",
    ArchiveFormat.TAR_XZ: "r:xz",
    ArchiveFormat.TAR: "r:",
}


def _member_destination(root: Path, member_name: str) -> Path:
    member = validate_archive_member_path(member_name)
    dest_path = (root / Path(*member.parts)).resolve()
    resolved_root = root.resolve()
    if not str(dest_path).startswith(str(resolved_root) + os.sep) and dest_path != resolved_root:
        raise ValueError(f"Archive entry escapes extraction root: {member_name}")
    return dest_path


def _extract_zip(data: bytes, target: Path) -> None:
    with zipfile.ZipFile(io.BytesIO(data), "r") as zf:
        for info in zf.infolist():
            # Block symlinks from archives.
            mode = (info.external_attr >> 16) & 0o170000
            if mode == 0o120000:
                raise ValueError(f"Archive contains a symbolic link entry: {info.filename}")

            dest_path = _member_destination(target, info.filename)
            if info.is_dir():
                dest_path.mkdir(parents=True, exist_ok=True)
                continue

            dest_path.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(info, "r") as src, dest_path.open("wb") as dst:
                shutil.copyfileobj(src, dst, length=1024 * 1024)


def _extract_tar(data: bytes, target: Path, mode: str) -> None:
    with tarfile.open(fileobj=io.BytesIO(data), mode=mode) as tf:
        for member in tf.getmembers():
            if member.issym() or member.islnk():
                raise ValueError(f"Archive contains a link entry: {member.name}")
            dest_path = _member_destination(target, member.name)
            if member.isdir():
                dest_path.mkdir(parents=True, exist_ok=True)
                continue
            if not member.isfile():
                raise ValueError(f"Archive contains a special file entry: {member.name}")

            src = tf.extractfile(member)
            if src is None:
                raise ValueError(f"Archive entry has no content: {member.name}")
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            with src, dest_path.open("wb") as dst:
                shutil.copyfileobj(src, dst, length=1024 * 1024)


def extract_archive(data: bytes, archive_format: ArchiveFormat, target: Path, executable: str) -> Path:
    """Unpack ``data`` under ``target`` and return the extraction root."""
    target.mkdir(parents=True, exist_ok=True)
    try:
        if archive_format is ArchiveFormat.RAW:
            (target / executable).write_bytes(data)
        elif archive_format is ArchiveFormat.ZIP:
            _extract_zip(data, target)
        else:
            _extract_tar(data, target, _TAR_MODES[archive_format])
    except (zipfile.BadZipFile, tarfile.TarError, zlib.error, lzma.LZMAError, EOFError) as exc:
        raise MalformedArchive(f"Cannot read {archive_format.value} archive: {exc}") from exc
    except ValueError as exc:
        raise MalformedArchive(str(exc)) from exc
    return target


def installed_name(executable: str, windows: bool = False) -> str:
    if windows and not executable.lower().endswith(".exe"):
        return f"{executable}.exe"
    return executable


def _is_candidate(path: Path, executable: str, windows: bool) -> bool:
    # Windows file names are case-insensitive and may carry the .exe suffix.
    if windows:
        return path.name.lower() in {executable.lower(), installed_name(executable, True).lower()}
    return path.name == executable


def locate_executable(root: Path, executable: str, windows: bool = False) -> Path:
    found = sorted(p for p in root.rglob("*") if p.is_file() and _is_candidate(p, executable, windows))
    if not found:
        raise MalformedArchive(f"Archive does not contain an executable named {executable!r}")
    if len(found) > 1:
        listing = ", ".join(str(p.relative_to(root)) for p in found)
        raise MalformedArchive(f"Archive contains {len(found)} candidates for {executable!r}: {listing}")
    return found[0]


def _is_metafile(path: Path) -> bool:
    upper = path.name.upper()
    return any(upper.startswith(prefix) for prefix in METAFILE_PREFIXES)


def install_metafiles(root: Path, metafiles_dir: Path) -> list[Path]:
    installed: list[Path] = []
    metafiles = sorted(p for p in root.rglob("*") if p.is_file() and _is_metafile(p))
    if not metafiles:
        return installed
    metafiles_dir.mkdir(parents=True, exist_ok=True)
    for src in metafiles:
        dest = metafiles_dir / src.name
        fd, tmp_name = tempfile.mkstemp(prefix=f".{src.name}.", suffix=TEMP_SUFFIX, dir=metafiles_dir)
        os.close(fd)
        shutil.copyfile(src, tmp_name)
        os.replace(tmp_name, dest)
        installed.append(dest)
    log.info("Installed %d metadata file(s) into %s", len(installed), metafiles_dir)
    return installed


def sweep_stale_temp(target_dir: Path, max_age_seconds: int = STALE_TEMP_SECONDS) -> int:
    """Remove temp directories left behind by killed installs.

    Only entries older than ``max_age_seconds`` are touched, so the live
    temp directory of a concurrent install is never swept away.
    """
    if not target_dir.is_dir():
        return 0
    removed = 0
    cutoff = time.time() - max_age_seconds
    for path in target_dir.glob(f".*{TEMP_SUFFIX}"):
        try:
            if path.stat().st_mtime >= cutoff:
                continue
        except FileNotFoundError:
            continue
        if path.is_dir():
            shutil.rmtree(path, ignore_errors=True)
        else:
            path.unlink(missing_ok=True)
        removed += 1
    if removed:
        log.info("Removed %d stale temporary location(s) from %s", removed, target_dir)
    return removed


def install(
    data: bytes,
    target_dir: Path,
    executable: str,
    archive_format: ArchiveFormat = ArchiveFormat.ZIP,
    metafiles_dir: Path | None = None,
    on_extracted: Callable[[Path], None] | None = None,
    windows: bool = False,
) -> Path:
    """Place the single executable from verified archive bytes into ``target_dir``.

    The archive is unpacked in a fresh temporary directory inside
    ``target_dir`` so the final step is one same-filesystem ``os.replace``:
    readers see either the previous executable or the new one. An existing
    file at the destination is overwritten. The temporary directory is
    removed whether or not the install succeeds.

    The destination name is always ``executable`` (plus ``.exe`` for
    ``windows`` targets) whatever the spelling inside the archive, so an
    upgrade replaces the previous file instead of landing beside it.
    """
    target_dir.mkdir(parents=True, exist_ok=True)
    scratch = Path(tempfile.mkdtemp(prefix=f".{executable}.", suffix=TEMP_SUFFIX, dir=target_dir))
    try:
        root = extract_archive(data, archive_format, scratch / "extract", executable)
        found = locate_executable(root, executable, windows=windows)
        if on_extracted is not None:
            on_extracted(found)

        found.chmod(EXECUTABLE_MODE)
        destination = target_dir / installed_name(executable, windows)
        os.replace(found, destination)
        log.info("Installed %s", destination)

        if metafiles_dir is not None:
            install_metafiles(root, metafiles_dir)
        return destination
    finally:
        shutil.rmtree(scratch, ignore_errors=True)


def is_executable(path: Path) -> bool:
    mode = path.stat().st_mode
    return bool(mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))
