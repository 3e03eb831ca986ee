"""Host platform detection."""

from __future__ import annotations

import platform
import struct

from binfetch.common.types import Architecture, Bitness, OperatingSystem, PlatformDescriptor


_ARCH_ALIASES: dict[str, Architecture] = {
    "x86_64": Architecture.X86_64,
    "amd64": Architecture.X86_64,
    "x64": Architecture.X86_64,
    "aarch64": Architecture.ARM64,
    "arm64": Architecture.ARM64,
    "arm64e": Architecture.ARM64,
    "i386": Architecture.X86,
    "i486": Architecture.X86,
    "i586": Architecture.X86,
    "i686": Architecture.X86,
    "x86": Architecture.X86,
    "arm": Architecture.ARM,
}

_NATURAL_BITS: dict[Architecture, Bitness] = {
    Architecture.X86_64: Bitness.B64,
    Architecture.ARM64: Bitness.B64,
    Architecture.X86: Bitness.B32,
    Architecture.ARM: Bitness.B32,
}


def normalize_os(system: str) -> OperatingSystem:
    s = str(system or "").strip().lower()
    if s.startswith("darwin") or s.startswith("mac"):
        return OperatingSystem.MACOS
    if s.startswith("linux"):
        return OperatingSystem.LINUX
    if s.startswith(("win", "cygwin", "msys", "mingw")):
        return OperatingSystem.WINDOWS
    if s.startswith("freebsd"):
        return OperatingSystem.FREEBSD
    return OperatingSystem.UNKNOWN


def normalize_arch(machine: str) -> Architecture:
    m = str(machine or "").strip().lower()
    if m in _ARCH_ALIASES:
        return _ARCH_ALIASES[m]
    if m.startswith("armv8"):
        return Architecture.ARM64
    if m.startswith(("armv6", "armv7")):
        return Architecture.ARM
    return Architecture.UNKNOWN


def normalize_bits(pointer_bits: int | None, arch: Architecture) -> Bitness:
    if pointer_bits == 64:
        return Bitness.B64
    if pointer_bits == 32:
        return Bitness.B32
    return _NATURAL_BITS.get(arch, Bitness.UNKNOWN)


def _pointer_bits() -> int | None:
    try:
        return struct.calcsize("P") * 8
    except struct.error:
        return None


def probe(
    system: str | None = None,
    machine: str | None = None,
    pointer_bits: int | None = None,
) -> PlatformDescriptor:
    """Describe the host as an (os, arch, bits) triple.

    Arguments override the live values, which keeps the mapping testable;
    ``pointer_bits=0`` means the word size is not known and the
    architecture's natural width is used. Never raises: anything unrecognised becomes ``unknown`` so the only way
    an unusual host fails is "no matching artifact" at resolution.
    """
    if system is None:
        system = platform.system()
    if machine is None:
        machine = platform.machine()
    if pointer_bits is None:
        pointer_bits = _pointer_bits()

    arch = normalize_arch(machine)
    return PlatformDescriptor(
        os=normalize_os(system),
        arch=arch,
        bits=normalize_bits(pointer_bits, arch),
    )
