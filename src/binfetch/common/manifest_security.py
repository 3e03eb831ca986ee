from __future__ import annotations

import base64
import json
from pathlib import PurePosixPath
from typing import Iterable, Mapping
from urllib.parse import urlparse

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey


CATALOG_SIGNATURE_ALG = "ed25519"

_SIGNATURE_FIELDS = ("signature_alg", "signature_key_id", "signature")


def _normalize_host(host: str) -> str:
    return str(host or "").strip().lower().rstrip(".")


def _is_allowed_host(host: str, allowed_hosts: Iterable[str]) -> bool:
    normalized = _normalize_host(host)
    if not normalized:
        return False
    allowed = {_normalize_host(v) for v in allowed_hosts}
    if normalized in allowed:
        return True
    return any(normalized.endswith("." + entry) for entry in allowed)


def validate_trusted_url(url: str, allowed_hosts: Iterable[str], allow_http: bool = False) -> None:
    """Reject non-https URLs and, when an allow-list is configured, foreign hosts."""
    parsed = urlparse(str(url))
    scheme = (parsed.scheme or "").lower()
    if scheme == "http" and not allow_http:
        raise ValueError(f"Refusing plain-http download: {url}")
    if scheme not in {"http", "https"}:
        raise ValueError(f"Unsupported URL scheme for download: {url}")
    host = parsed.hostname or ""
    hosts = tuple(allowed_hosts)
    if not host:
        raise ValueError(f"Download URL has no host: {url}")
    if hosts and not _is_allowed_host(host, hosts):
        raise ValueError(f"Untrusted download host: {host}")


def canonical_catalog_bytes(catalog: Mapping[str, object]) -> bytes:
    payload = {k: v for k, v in catalog.items() if k not in _SIGNATURE_FIELDS}
    if not payload:
        raise ValueError("Catalog is empty.")
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True).encode("utf-8")


def is_signed(catalog: Mapping[str, object]) -> bool:
    return any(str(catalog.get(k, "")).strip() for k in _SIGNATURE_FIELDS)


def _decode_private_key(value: str) -> Ed25519PrivateKey:
    text = str(value or "").strip()
    if not text:
        raise ValueError("Catalog signing key is empty.")

    if text.startswith("-----BEGIN"):
        key = serialization.load_pem_private_key(text.encode("utf-8"), password=None)
        if not isinstance(key, Ed25519PrivateKey):
            raise ValueError("Catalog signing key must be an Ed25519 private key.")
        return key

    try:
        raw = base64.b64decode(text, validate=True)
    except Exception as exc:
        raise ValueError("Catalog signing key must be PEM or base64-encoded raw Ed25519 key.") from exc
    if len(raw) != 32:
        raise ValueError("Base64 catalog signing key must decode to 32 bytes.")
    return Ed25519PrivateKey.from_private_bytes(raw)


def sign_catalog(catalog: Mapping[str, object], private_key_value: str, key_id: str) -> dict:
    payload = canonical_catalog_bytes(catalog)
    key = _decode_private_key(private_key_value)
    signature = key.sign(payload)

    signed = {k: v for k, v in catalog.items() if k not in _SIGNATURE_FIELDS}
    signed["signature_alg"] = CATALOG_SIGNATURE_ALG
    signed["signature_key_id"] = str(key_id).strip()
    signed["signature"] = base64.b64encode(signature).decode("ascii")
    return signed


def verify_catalog_signature(catalog: Mapping[str, object], public_keys: Mapping[str, str]) -> str:
    """Check the Ed25519 signature and return the key id that made it."""
    alg = str(catalog.get("signature_alg", "")).strip().lower()
    key_id = str(catalog.get("signature_key_id", "")).strip()
    signature_b64 = str(catalog.get("signature", "")).strip()

    if alg != CATALOG_SIGNATURE_ALG:
        raise ValueError(f"Unsupported catalog signature algorithm: {alg or '<missing>'}")
    if not key_id:
        raise ValueError("Catalog signature_key_id is missing.")
    if not signature_b64:
        raise ValueError("Catalog signature is missing.")

    key_b64 = public_keys.get(key_id)
    if not key_b64:
        raise ValueError(f"Catalog key ID {key_id!r} is not trusted.")

    try:
        signature = base64.b64decode(signature_b64, validate=True)
    except Exception as exc:
        raise ValueError("Catalog signature is not valid base64.") from exc

    try:
        pub_raw = base64.b64decode(key_b64, validate=True)
    except Exception as exc:
        raise ValueError(f"Public key for {key_id!r} is invalid.") from exc

    if len(pub_raw) != 32:
        raise ValueError(f"Public key for {key_id!r} must be 32 bytes.")

    payload = canonical_catalog_bytes(catalog)
    pub = Ed25519PublicKey.from_public_bytes(pub_raw)
    try:
        pub.verify(signature, payload)
    except Exception as exc:
        raise ValueError("Catalog signature verification failed.") from exc
    return key_id


def validate_archive_member_path(member_name: str) -> PurePosixPath:
    # Normalize as posix to avoid platform-dependent traversal quirks.
    normalized = str(member_name or "").replace("\\", "/").strip()
    if not normalized:
        raise ValueError("Archive contains an empty path entry.")

    path = PurePosixPath(normalized)
    parts = path.parts
    if not parts:
        raise ValueError("Archive path entry has no parts.")
    if path.is_absolute():
        raise ValueError(f"Archive entry is absolute path: {member_name}")
    if any(part in {"..", ""} for part in parts):
        raise ValueError(f"Archive entry contains traversal segment: {member_name}")
    if ":" in parts[0]:
        raise ValueError(f"Archive entry contains drive designator: {member_name}")
    return path
