from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class OperatingSystem(str, Enum):
    MACOS = "macos"
    LINUX = "linux"
    WINDOWS = "windows"
    FREEBSD = "freebsd"
    UNKNOWN = "unknown"


class Architecture(str, Enum):
    X86_64 = "x86_64"
    ARM64 = "arm64"
    X86 = "x86"
    ARM = "arm"
    UNKNOWN = "unknown"


class Bitness(int, Enum):
    B32 = 32
    B64 = 64
    UNKNOWN = 0


class ArchiveFormat(str, Enum):
    ZIP = "zip"
    TAR_GZ = "tar.gz"
    TAR_XZ = "tar.xz"
    TAR = "tar"
    RAW = "raw"

    @classmethod
    def from_url(cls, url: str) -> "ArchiveFormat":
        path = str(url).split("?", 1)[0].split("#", 1)[0].lower()
        if path.endswith(".zip"):
            return cls.ZIP
        if path.endswith((".tar.gz", ".tgz")):
            return cls.TAR_GZ
        if path.endswith((".tar.xz", ".txz")):
            return cls.TAR_XZ
        if path.endswith(".tar"):
            return cls.TAR
        return cls.RAW


@dataclass(frozen=True)
class PlatformDescriptor:
    os: OperatingSystem
    arch: Architecture
    bits: Bitness

    def __str__(self) -> str:
        bits = "?" if self.bits is Bitness.UNKNOWN else str(self.bits.value)
        return f"{self.os.value}/{self.arch.value}/{bits}"


_HEX_RE = re.compile(r"^[0-9a-f]+$")


@dataclass(frozen=True)
class ArtifactEntry:
    os: OperatingSystem
    arch: Architecture
    bits: Bitness | None
    url: str
    checksum: str
    archive_format: ArchiveFormat = ArchiveFormat.ZIP
    digest_algorithm: str = "sha256"
    size: int = 0

    def matches(self, descriptor: PlatformDescriptor) -> bool:
        if self.os is not descriptor.os or self.arch is not descriptor.arch:
            return False
        # A missing bits field covers every word size of this os/arch.
        return self.bits is None or self.bits is descriptor.bits

    def overlaps(self, other: "ArtifactEntry") -> bool:
        if self.os is not other.os or self.arch is not other.arch:
            return False
        return self.bits is None or other.bits is None or self.bits is other.bits

    @property
    def platform_label(self) -> str:
        bits = "any" if self.bits is None else str(self.bits.value)
        return f"{self.os.value}/{self.arch.value}/{bits}"


@dataclass(frozen=True)
class VersionManifest:
    name: str
    version: str
    executable: str
    entries: Tuple[ArtifactEntry, ...]
    published_at: str = ""
    notes_url: str = ""


@dataclass(frozen=True)
class ReleaseCatalog:
    schema_version: str
    name: str
    executable: str
    releases: Tuple[VersionManifest, ...]
    homepage: str = ""
    description: str = ""

    def versions(self) -> list[str]:
        return [release.version for release in self.releases]


def is_hex_digest(value: str) -> bool:
    return bool(_HEX_RE.match(value))


def parse_version(version: str) -> Tuple[int, int, int]:
    parts = [p for p in str(version).strip().lstrip("vV").split(".") if p]
    nums: list[int] = []
    for part in parts[:3]:
        digits = "".join(ch for ch in part if ch.isdigit())
        nums.append(int(digits) if digits else 0)
    while len(nums) < 3:
        nums.append(0)
    return (nums[0], nums[1], nums[2])
