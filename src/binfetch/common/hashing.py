from __future__ import annotations

import hashlib


SUPPORTED_DIGESTS = ("sha256", "sha384", "sha512")


def new_digest(algorithm: str = "sha256"):
    name = str(algorithm or "").strip().lower()
    if name not in SUPPORTED_DIGESTS:
        raise ValueError(f"Unsupported digest algorithm: {algorithm!r}")
    return hashlib.new(name)


def digest_hex_length(algorithm: str = "sha256") -> int:
    return new_digest(algorithm).digest_size * 2


def digests_equal(expected: str, actual: str) -> bool:
    return str(expected).strip().lower() == str(actual).strip().lower()
