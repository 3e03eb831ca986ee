from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from binfetch.common.config import InstallPaths, RuntimeConfig
from binfetch.common.errors import IntegrityViolation, StorageError, UnsupportedPlatform
from binfetch.common.state import load_install_state
from binfetch.common.types import Architecture, Bitness, OperatingSystem, PlatformDescriptor
from binfetch.installer.fetcher import ArtifactFetcher
from binfetch.installer.manifest import parse_catalog, select_release
from binfetch.installer.service import InstallService, InstallStage
from tests.support import FakeSession, artifact, catalog, release, sha256, zip_bytes


LINUX_X64 = PlatformDescriptor(OperatingSystem.LINUX, Architecture.X86_64, Bitness.B64)


def _paths(root: Path) -> InstallPaths:
    return InstallPaths.at(bin_dir=root / "bin", data_root=root / "data")


class InstallServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.paths = _paths(self.root)
        self.v1 = zip_bytes({"tool/tool": b"v1", "tool/LICENSE": b"GPL"})
        self.v2 = zip_bytes({"tool/tool": b"v2"})
        self.url_v1 = "https://downloads.example.com/tool_1.0.0_linux_amd64.zip"
        self.url_v2 = "https://downloads.example.com/tool_2.0.0_linux_amd64.zip"
        self.session = FakeSession({self.url_v1: self.v1, self.url_v2: self.v2})
        self.catalog = parse_catalog(
            catalog(
                release("1.0.0", artifact("linux", "x86_64", 64, self.v1, url=self.url_v1)),
                release("2.0.0", artifact("linux", "x86_64", 64, self.v2, url=self.url_v2)),
            )
        )

    def tearDown(self) -> None:
        self._td.cleanup()

    def _service(self, descriptor: PlatformDescriptor = LINUX_X64) -> InstallService:
        runtime = RuntimeConfig()
        return InstallService(
            self.paths,
            runtime,
            fetcher=ArtifactFetcher(runtime, session=self.session),
            probe_fn=lambda: descriptor,
        )

    def test_end_to_end_install_then_upgrade(self) -> None:
        stages: list[InstallStage] = []
        service = self._service()

        outcome = service.install_release(
            select_release(self.catalog, "1.0.0"),
            progress_callback=lambda p: stages.append(p.stage),
        )
        target = self.paths.bin_dir / "tool"
        self.assertEqual(outcome.installed_path, target)
        self.assertEqual(target.read_bytes(), b"v1")
        if os.name == "posix":
            self.assertTrue(os.access(target, os.X_OK))
        # Download progress events repeat the current stage.
        transitions = [s for i, s in enumerate(stages) if i == 0 or stages[i - 1] is not s]
        self.assertEqual(
            transitions,
            [
                InstallStage.PROBED,
                InstallStage.RESOLVED,
                InstallStage.FETCHED,
                InstallStage.VERIFIED,
                InstallStage.EXTRACTED,
                InstallStage.INSTALLED,
            ],
        )

        outcome = service.install_release(select_release(self.catalog))
        self.assertEqual(outcome.version, "2.0.0")
        self.assertEqual(target.read_bytes(), b"v2")
        self.assertEqual(sorted(p.name for p in self.paths.bin_dir.iterdir()), ["tool"])

        state = load_install_state(self.paths.state_dir, "tool")
        self.assertEqual(state.installed_version, "2.0.0")
        self.assertEqual(state.checksum, sha256(self.v2))
        self.assertEqual(state.artifact_url, self.url_v2)

    def test_checksum_mismatch_leaves_target_untouched(self) -> None:
        service = self._service()
        service.install_release(select_release(self.catalog, "1.0.0"))

        tampered = parse_catalog(
            catalog(release("3.0.0", artifact("linux", "x86_64", 64, b"something else", url=self.url_v2)))
        )
        stages: list[InstallStage] = []
        with self.assertRaises(IntegrityViolation) as ctx:
            service.install_release(tampered.releases[0], progress_callback=lambda p: stages.append(p.stage))

        self.assertEqual(ctx.exception.stage, InstallStage.FETCHED.value)
        self.assertEqual(ctx.exception.version, "3.0.0")
        self.assertEqual(ctx.exception.descriptor, LINUX_X64)
        self.assertEqual(ctx.exception.entry.url, self.url_v2)
        self.assertEqual(stages[-1], InstallStage.FAILED)
        self.assertNotIn(InstallStage.EXTRACTED, stages)
        self.assertEqual((self.paths.bin_dir / "tool").read_bytes(), b"v1")
        self.assertEqual(sorted(p.name for p in self.paths.bin_dir.iterdir()), ["tool"])
        self.assertEqual(load_install_state(self.paths.state_dir, "tool").installed_version, "1.0.0")

    def test_storage_failure_is_classified_and_keeps_previous_executable(self) -> None:
        service = self._service()
        service.install_release(select_release(self.catalog, "1.0.0"))

        stages: list[InstallStage] = []
        with patch("binfetch.installer.service.install", side_effect=OSError(28, "No space left on device")):
            with self.assertRaises(StorageError) as ctx:
                service.install_release(
                    select_release(self.catalog), progress_callback=lambda p: stages.append(p.stage)
                )

        self.assertEqual(ctx.exception.stage, InstallStage.VERIFIED.value)
        self.assertEqual(ctx.exception.version, "2.0.0")
        self.assertEqual(ctx.exception.descriptor, LINUX_X64)
        self.assertEqual(ctx.exception.entry.url, self.url_v2)
        self.assertIsInstance(ctx.exception.__cause__, OSError)
        self.assertEqual(stages[-1], InstallStage.FAILED)
        self.assertEqual((self.paths.bin_dir / "tool").read_bytes(), b"v1")
        self.assertEqual(load_install_state(self.paths.state_dir, "tool").installed_version, "1.0.0")

    def test_unusable_bin_dir_is_a_storage_error(self) -> None:
        blocker = self.root / "not-a-dir"
        blocker.write_bytes(b"")
        self.paths = InstallPaths.at(bin_dir=blocker / "bin", data_root=self.root / "data")
        with self.assertRaises(StorageError) as ctx:
            self._service().install_release(select_release(self.catalog))
        self.assertEqual(ctx.exception.kind, "storage-error")
        self.assertFalse(ctx.exception.retryable)

    def test_windows_entry_installs_exe_name(self) -> None:
        win = PlatformDescriptor(OperatingSystem.WINDOWS, Architecture.X86_64, Bitness.B64)
        archive = zip_bytes({"Tool.EXE": b"MZ"})
        url = "https://downloads.example.com/tool_windows_amd64.zip"
        self.session.bodies[url] = archive
        parsed = parse_catalog(catalog(release("1.0.0", artifact("windows", "amd64", 64, archive, url=url))))
        outcome = self._service(win).install_release(parsed.releases[0])
        self.assertEqual(outcome.installed_path, self.paths.bin_dir / "tool.exe")
        self.assertEqual(sorted(p.name for p in self.paths.bin_dir.iterdir()), ["tool.exe"])

    def test_unsupported_platform_fails_before_download(self) -> None:
        mac_arm = PlatformDescriptor(OperatingSystem.MACOS, Architecture.ARM64, Bitness.B64)
        service = self._service(mac_arm)
        with self.assertRaises(UnsupportedPlatform) as ctx:
            service.install_release(select_release(self.catalog))
        self.assertEqual(ctx.exception.stage, InstallStage.PROBED.value)
        self.assertEqual(self.session.calls, [])
        self.assertFalse((self.paths.bin_dir / "tool").exists())

    def test_metafiles_installed_into_doc_dir(self) -> None:
        self._service().install_release(select_release(self.catalog, "1.0.0"), with_metafiles=True)
        self.assertEqual((self.paths.doc_dir / "tool" / "LICENSE").read_bytes(), b"GPL")

    def test_failing_progress_callback_does_not_abort_install(self) -> None:
        def explode(_progress) -> None:
            raise RuntimeError("ui gone")

        outcome = self._service().install_release(select_release(self.catalog), progress_callback=explode)
        self.assertEqual(outcome.installed_path.read_bytes(), b"v2")

    def test_plan(self) -> None:
        descriptor, entry = self._service().plan(select_release(self.catalog))
        self.assertEqual(descriptor, LINUX_X64)
        self.assertEqual(entry.url, self.url_v2)


if __name__ == "__main__":
    unittest.main()
