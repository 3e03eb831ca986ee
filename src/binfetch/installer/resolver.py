"""Platform to artifact resolution."""

from __future__ import annotations

from binfetch.common.errors import AmbiguousManifest, UnsupportedPlatform
from binfetch.common.types import ArtifactEntry, PlatformDescriptor, VersionManifest


def candidates(manifest: VersionManifest, descriptor: PlatformDescriptor) -> list[ArtifactEntry]:
    return [entry for entry in manifest.entries if entry.matches(descriptor)]


def resolve(manifest: VersionManifest, descriptor: PlatformDescriptor) -> ArtifactEntry:
    matches = candidates(manifest, descriptor)
    if not matches:
        supported = ", ".join(e.platform_label for e in manifest.entries) or "none"
        raise UnsupportedPlatform(
            f"{manifest.name} {manifest.version} has no artifact for {descriptor} (available: {supported})",
            descriptor=descriptor,
            version=manifest.version,
        )
    if len(matches) > 1:
        raise AmbiguousManifest(
            f"{manifest.name} {manifest.version} has {len(matches)} artifacts for {descriptor}: "
            + ", ".join(e.url for e in matches),
            entries=matches,
            descriptor=descriptor,
            version=manifest.version,
        )
    return matches[0]
