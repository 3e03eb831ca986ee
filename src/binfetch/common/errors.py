from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from binfetch.common.types import ArtifactEntry, PlatformDescriptor


class InstallError(Exception):
    """Base for every failure an install attempt can end in.

    ``stage`` is filled in by the install service with the state the attempt
    was in when it failed; ``descriptor``, ``version`` and ``entry`` carry
    whatever context was known at the raise site.
    """

    kind = "install-error"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        descriptor: PlatformDescriptor | None = None,
        version: str | None = None,
        entry: ArtifactEntry | None = None,
    ):
        super().__init__(message)
        self.descriptor = descriptor
        self.version = version
        self.entry = entry
        self.stage: str | None = None

    def context(self) -> dict[str, str]:
        out: dict[str, str] = {"kind": self.kind}
        if self.stage:
            out["stage"] = self.stage
        if self.descriptor is not None:
            out["platform"] = str(self.descriptor)
        if self.version:
            out["version"] = self.version
        if self.entry is not None:
            out["url"] = self.entry.url
        return out


class ManifestError(InstallError):
    kind = "manifest-error"


class AmbiguousManifest(ManifestError):
    """Two or more entries claim the same host platform."""

    kind = "ambiguous-manifest"

    def __init__(
        self,
        message: str,
        *,
        entries: Sequence[ArtifactEntry] = (),
        descriptor: PlatformDescriptor | None = None,
        version: str | None = None,
    ):
        super().__init__(message, descriptor=descriptor, version=version)
        self.entries = tuple(entries)


class UnsupportedPlatform(InstallError):
    kind = "unsupported-platform"


class UntrustedSource(InstallError):
    kind = "untrusted-source"


class FetchError(InstallError):
    kind = "fetch-error"
    retryable = True


class IntegrityViolation(InstallError):
    kind = "integrity-violation"

    def __init__(self, message: str, *, expected: str, actual: str, **kwargs):
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual


class MalformedArchive(InstallError):
    kind = "malformed-archive"


class StorageError(InstallError):
    """The target directory could not be created or written to."""

    kind = "storage-error"
