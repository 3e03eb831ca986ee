from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path

import requests

from binfetch import __version__ as BINFETCH_VERSION
from binfetch.common.config import InstallPaths, RuntimeConfig
from binfetch.common.errors import (
    FetchError,
    InstallError,
    IntegrityViolation,
    MalformedArchive,
    StorageError,
    UnsupportedPlatform,
)
from binfetch.common.logging_utils import configure_logging
from binfetch.common.types import OperatingSystem, ReleaseCatalog
from binfetch.installer.fetcher import ArtifactFetcher, build_session
from binfetch.installer.manifest import load_catalog, select_release
from binfetch.installer.placement import installed_name
from binfetch.installer.probe import probe
from binfetch.installer.service import InstallProgress, InstallService, InstallStage


log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNSUPPORTED = 2
EXIT_FETCH = 3
EXIT_INTEGRITY = 4
EXIT_MALFORMED = 5
EXIT_MANIFEST = 6
EXIT_STORAGE = 7


def exit_code_for(exc: InstallError) -> int:
    if isinstance(exc, UnsupportedPlatform):
        return EXIT_UNSUPPORTED
    if isinstance(exc, FetchError):
        return EXIT_FETCH
    if isinstance(exc, IntegrityViolation):
        return EXIT_INTEGRITY
    if isinstance(exc, MalformedArchive):
        return EXIT_MALFORMED
    if isinstance(exc, StorageError):
        return EXIT_STORAGE
    return EXIT_MANIFEST


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="binfetch", description="Install pre-built release binaries.")
    parser.add_argument("--version", action="version", version=f"binfetch {BINFETCH_VERSION}")
    parser.add_argument("--log-level", default="INFO", help="Log level.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("probe", help="Print the host platform descriptor.")

    def add_manifest_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--manifest", default=None, help="Catalog JSON path or URL (default: $BINFETCH_MANIFEST_URL).")
        p.add_argument("--release", default="latest", help="Release version to use.")

    p_list = sub.add_parser("list", help="List releases and the platforms they ship.")
    p_list.add_argument("--manifest", default=None, help="Catalog JSON path or URL.")

    p_resolve = sub.add_parser("resolve", help="Print the artifact selected for this host.")
    add_manifest_args(p_resolve)

    p_install = sub.add_parser("install", help="Download, verify and install the executable.")
    add_manifest_args(p_install)
    p_install.add_argument("--bin-dir", type=Path, default=None, help="Install directory.")
    p_install.add_argument("--retries", type=int, default=0, help="Retry failed downloads this many times.")
    p_install.add_argument("--with-metafiles", action="store_true", help="Also install README/LICENSE files.")
    p_install.add_argument("--dry-run", action="store_true", help="Resolve only; do not download.")
    return parser


def _load(args: argparse.Namespace, runtime: RuntimeConfig, session: requests.Session) -> ReleaseCatalog:
    source = args.manifest or runtime.manifest_url
    return load_catalog(source, runtime, session=session)


def _print_progress(p: InstallProgress) -> None:
    if p.stage is InstallStage.FAILED:
        return
    if p.bytes_done is not None and p.bytes_total and p.stage is InstallStage.RESOLVED:
        print(f"  {p.bytes_done}/{p.bytes_total} bytes")
        return
    print(f"{p.stage.value}: {p.message}")


def cmd_probe(args: argparse.Namespace) -> int:
    descriptor = probe()
    print(f"os={descriptor.os.value} arch={descriptor.arch.value} bits={descriptor.bits.value}")
    return EXIT_OK


def cmd_list(args: argparse.Namespace, runtime: RuntimeConfig, session: requests.Session) -> int:
    catalog = _load(args, runtime, session)
    print(f"{catalog.name} ({catalog.executable}) {catalog.homepage}".rstrip())
    for release in catalog.releases:
        platforms = ", ".join(e.platform_label for e in release.entries)
        print(f"  {release.version}: {platforms}")
    return EXIT_OK


def cmd_resolve(
    args: argparse.Namespace, runtime: RuntimeConfig, paths: InstallPaths, session: requests.Session
) -> int:
    manifest = select_release(_load(args, runtime, session), args.release)
    service = InstallService(paths, runtime, fetcher=ArtifactFetcher(runtime, session=session))
    descriptor, entry = service.plan(manifest)
    print(f"platform: {descriptor}")
    print(f"version:  {manifest.version}")
    print(f"url:      {entry.url}")
    print(f"{entry.digest_algorithm}:   {entry.checksum}")
    print(f"format:   {entry.archive_format.value}")
    return EXIT_OK


def cmd_install(
    args: argparse.Namespace, runtime: RuntimeConfig, paths: InstallPaths, session: requests.Session
) -> int:
    if args.bin_dir is not None:
        paths = paths.with_bin_dir(args.bin_dir)
    manifest = select_release(_load(args, runtime, session), args.release)
    service = InstallService(paths, runtime, fetcher=ArtifactFetcher(runtime, session=session))

    if args.dry_run:
        descriptor, entry = service.plan(manifest)
        print(f"Would install {manifest.name} {manifest.version} for {descriptor} from {entry.url}")
        windows = entry.os is OperatingSystem.WINDOWS
        print(f"into {paths.bin_dir / installed_name(manifest.executable, windows)}")
        return EXIT_OK

    attempts = max(args.retries, 0) + 1
    for attempt in range(1, attempts + 1):
        try:
            outcome = service.install_release(
                manifest,
                progress_callback=_print_progress,
                with_metafiles=args.with_metafiles,
            )
        except FetchError as exc:
            if attempt >= attempts:
                raise
            delay = min(2.0 * attempt, 10.0)
            log.warning("Download failed (attempt %d/%d): %s; retrying in %.0fs", attempt, attempts, exc, delay)
            time.sleep(delay)
            continue
        print(f"Installed {manifest.name} {outcome.version} -> {outcome.installed_path}")
        return EXIT_OK
    return EXIT_FETCH


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "probe":
        configure_logging(None, level=args.log_level)
        return cmd_probe(args)

    # Directories are created lazily; the install step makes the bin dir it actually uses.
    paths = InstallPaths.default()
    try:
        configure_logging(paths.logs_dir, level=args.log_level)
    except OSError as exc:
        configure_logging(None, level=args.log_level)
        log.warning("Cannot write log file under %s: %s", paths.logs_dir, exc)

    try:
        runtime = RuntimeConfig.from_env()
        session = build_session(runtime)
        if args.command == "list":
            return cmd_list(args, runtime, session)
        if args.command == "resolve":
            return cmd_resolve(args, runtime, paths, session)
        return cmd_install(args, runtime, paths, session)
    except InstallError as exc:
        log.error("%s failed: %s", args.command, exc)
        if isinstance(exc, IntegrityViolation):
            log.error("The downloaded artifact does not match its published checksum; it was not installed.")
        return exit_code_for(exc)
    except ValueError as exc:
        log.error("Invalid configuration: %s", exc)
        return EXIT_MANIFEST
    except OSError as exc:
        log.error("%s failed: %s", args.command, exc)
        return EXIT_STORAGE
