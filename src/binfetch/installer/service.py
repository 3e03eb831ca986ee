from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from binfetch.common.config import InstallPaths, RuntimeConfig
from binfetch.common.errors import InstallError, StorageError
from binfetch.common.state import InstallState, load_install_state, save_install_state
from binfetch.common.types import ArtifactEntry, OperatingSystem, PlatformDescriptor, VersionManifest
from binfetch.installer.fetcher import ArtifactFetcher, DownloadProgress
from binfetch.installer.placement import install, sweep_stale_temp
from binfetch.installer.probe import probe
from binfetch.installer.resolver import resolve


log = logging.getLogger(__name__)


class InstallStage(str, Enum):
    STARTED = "started"
    PROBED = "probed"
    RESOLVED = "resolved"
    FETCHED = "fetched"
    VERIFIED = "verified"
    EXTRACTED = "extracted"
    INSTALLED = "installed"
    FAILED = "failed"


@dataclass(frozen=True)
class InstallProgress:
    stage: InstallStage
    message: str
    version: str | None = None
    bytes_done: int | None = None
    bytes_total: int | None = None


@dataclass(frozen=True)
class InstallOutcome:
    descriptor: PlatformDescriptor
    version: str
    entry: ArtifactEntry
    installed_path: Path
    checksum: str


class InstallService:
    def __init__(
        self,
        paths: InstallPaths,
        runtime: RuntimeConfig,
        fetcher: ArtifactFetcher | None = None,
        probe_fn: Callable[[], PlatformDescriptor] | None = None,
    ):
        self.paths = paths
        self.runtime = runtime
        self.fetcher = fetcher or ArtifactFetcher(runtime)
        self.probe_fn = probe_fn or probe

    def _emit(
        self,
        callback: Callable[[InstallProgress], None] | None,
        progress: InstallProgress,
    ) -> None:
        if callback is None:
            return
        try:
            callback(progress)
        except Exception:
            log.exception("Install progress callback failed.")

    def plan(
        self,
        manifest: VersionManifest,
        descriptor: PlatformDescriptor | None = None,
    ) -> tuple[PlatformDescriptor, ArtifactEntry]:
        descriptor = descriptor or self.probe_fn()
        return descriptor, resolve(manifest, descriptor)

    def install_release(
        self,
        manifest: VersionManifest,
        descriptor: PlatformDescriptor | None = None,
        progress_callback: Callable[[InstallProgress], None] | None = None,
        with_metafiles: bool = False,
    ) -> InstallOutcome:
        stage = InstallStage.STARTED
        version = manifest.version
        entry: ArtifactEntry | None = None

        def advance(new_stage: InstallStage, message: str, **extra) -> None:
            nonlocal stage
            stage = new_stage
            log.info("[%s] %s", new_stage.value, message)
            self._emit(progress_callback, InstallProgress(stage=new_stage, message=message, version=version, **extra))

        def on_download(p: DownloadProgress) -> None:
            self._emit(
                progress_callback,
                InstallProgress(
                    stage=stage,
                    message=f"Downloading {p.url}",
                    version=version,
                    bytes_done=p.bytes_done,
                    bytes_total=p.bytes_total,
                ),
            )

        try:
            if descriptor is None:
                descriptor = self.probe_fn()
            advance(InstallStage.PROBED, f"Host platform is {descriptor}")

            entry = resolve(manifest, descriptor)
            advance(InstallStage.RESOLVED, f"Selected {entry.platform_label} artifact {entry.url}")

            data, digest = self.fetcher.fetch(entry, progress_callback=on_download)
            advance(InstallStage.FETCHED, f"Fetched {len(data)} bytes", bytes_done=len(data), bytes_total=len(data))

            self.fetcher.verify(entry, data, digest)
            advance(InstallStage.VERIFIED, f"{entry.digest_algorithm} checksum matches {entry.checksum}")

            metafiles_dir = self.paths.doc_dir / manifest.executable if with_metafiles else None
            try:
                self.paths.ensure_layout()
                sweep_stale_temp(self.paths.bin_dir)
                installed_path = install(
                    data,
                    self.paths.bin_dir,
                    manifest.executable,
                    archive_format=entry.archive_format,
                    metafiles_dir=metafiles_dir,
                    on_extracted=lambda found: advance(InstallStage.EXTRACTED, f"Extracted {found.name}"),
                    windows=entry.os is OperatingSystem.WINDOWS,
                )
            except OSError as exc:
                raise StorageError(f"Cannot place {manifest.executable} in {self.paths.bin_dir}: {exc}") from exc
            advance(InstallStage.INSTALLED, f"Installed {manifest.name} {version} to {installed_path}")
        except InstallError as exc:
            exc.stage = exc.stage or stage.value
            if exc.descriptor is None:
                exc.descriptor = descriptor
            exc.version = exc.version or version
            if exc.entry is None:
                exc.entry = entry
            log.error("Install failed after %s: %s %s", stage.value, exc, exc.context())
            self._emit(progress_callback, InstallProgress(stage=InstallStage.FAILED, message=str(exc), version=version))
            raise
        except Exception as exc:
            log.exception("Install failed after %s", stage.value)
            self._emit(progress_callback, InstallProgress(stage=InstallStage.FAILED, message=str(exc), version=version))
            raise

        outcome = InstallOutcome(
            descriptor=descriptor,
            version=version,
            entry=entry,
            installed_path=installed_path,
            checksum=digest,
        )
        self.record(manifest, outcome)
        return outcome

    def record(self, manifest: VersionManifest, outcome: InstallOutcome) -> InstallState:
        state = load_install_state(self.paths.state_dir, manifest.executable)
        state.installed_version = outcome.version
        state.checksum = outcome.checksum
        state.artifact_url = outcome.entry.url
        state.installed_path = str(outcome.installed_path)
        state.touch_install_time()
        save_install_state(self.paths.state_dir, state)
        log.info("Install recorded: %s", asdict(state))
        return state
