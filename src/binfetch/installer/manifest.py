"""Loading and validation of release catalogs."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

import requests

from binfetch.common.config import RuntimeConfig
from binfetch.common.errors import AmbiguousManifest, FetchError, ManifestError, UntrustedSource
from binfetch.common.hashing import SUPPORTED_DIGESTS, digest_hex_length
from binfetch.common.manifest_security import is_signed, validate_trusted_url, verify_catalog_signature
from binfetch.common.types import (
    ArchiveFormat,
    ArtifactEntry,
    Architecture,
    Bitness,
    OperatingSystem,
    ReleaseCatalog,
    VersionManifest,
    is_hex_digest,
    parse_version,
)
from binfetch.installer.probe import normalize_arch, normalize_os


log = logging.getLogger(__name__)

CATALOG_SCHEMA_VERSION = "1"


def safe_executable_name(name: str) -> str:
    raw = str(name or "").strip()
    if not raw:
        raise ManifestError("Catalog executable name cannot be empty.")
    if raw in {".", ".."} or any(ch in raw for ch in ("/", "\\", ":")):
        raise ManifestError(f"Invalid executable name: {name!r}")
    return raw


def _parse_bits(raw: object, where: str) -> Bitness | None:
    if raw is None or str(raw).strip() in {"", "any"}:
        return None
    try:
        value = int(str(raw).strip())
    except ValueError as exc:
        raise ManifestError(f"{where}: bits must be 32, 64 or omitted, got {raw!r}") from exc
    if value == 32:
        return Bitness.B32
    if value == 64:
        return Bitness.B64
    raise ManifestError(f"{where}: bits must be 32, 64 or omitted, got {raw!r}")


def _parse_size(raw: object, where: str) -> int:
    if raw is None or str(raw).strip() == "":
        return 0
    if isinstance(raw, bool):
        raise ManifestError(f"{where}: size must be a non-negative integer, got {raw!r}")
    try:
        value = int(str(raw).strip())
    except ValueError as exc:
        raise ManifestError(f"{where}: size must be a non-negative integer, got {raw!r}") from exc
    if value < 0:
        raise ManifestError(f"{where}: size must be a non-negative integer, got {raw!r}")
    return value


def _parse_entry(raw: object, where: str, runtime: RuntimeConfig) -> ArtifactEntry:
    if not isinstance(raw, dict):
        raise ManifestError(f"{where} is not an object.")
    missing = [k for k in ("os", "arch", "url") if k not in raw]
    if missing:
        raise ManifestError(f"{where} missing fields: {missing}")

    os_name = normalize_os(str(raw["os"]))
    arch = normalize_arch(str(raw["arch"]))
    if os_name is OperatingSystem.UNKNOWN:
        raise ManifestError(f"{where}: unknown operating system {raw['os']!r}")
    if arch is Architecture.UNKNOWN:
        raise ManifestError(f"{where}: unknown architecture {raw['arch']!r}")

    algorithm = str(raw.get("digest", "sha256")).strip().lower()
    if algorithm not in SUPPORTED_DIGESTS:
        raise ManifestError(f"{where}: unsupported digest algorithm {algorithm!r}")
    checksum = str(raw.get(algorithm, raw.get("checksum", ""))).strip().lower()
    if not checksum:
        raise ManifestError(f"{where}: missing {algorithm} checksum")
    if len(checksum) != digest_hex_length(algorithm) or not is_hex_digest(checksum):
        raise ManifestError(f"{where}: {algorithm} checksum must be {digest_hex_length(algorithm)} hex characters")

    url = str(raw["url"]).strip()
    try:
        validate_trusted_url(url, runtime.trusted_hosts, allow_http=runtime.allow_insecure_http)
    except ValueError as exc:
        raise UntrustedSource(f"{where}: {exc}") from exc

    fmt_raw = str(raw.get("format", "")).strip().lower()
    if fmt_raw:
        try:
            archive_format = ArchiveFormat(fmt_raw)
        except ValueError as exc:
            raise ManifestError(f"{where}: unsupported archive format {fmt_raw!r}") from exc
    else:
        archive_format = ArchiveFormat.from_url(url)

    return ArtifactEntry(
        os=os_name,
        arch=arch,
        bits=_parse_bits(raw.get("bits"), where),
        url=url,
        checksum=checksum,
        archive_format=archive_format,
        digest_algorithm=algorithm,
        size=_parse_size(raw.get("size"), where),
    )


def check_unambiguous(manifest: VersionManifest) -> None:
    """Raise if any host could match more than one entry of ``manifest``."""
    entries = manifest.entries
    for i, first in enumerate(entries):
        for second in entries[i + 1 :]:
            if first.overlaps(second):
                raise AmbiguousManifest(
                    f"Release {manifest.version} has overlapping entries "
                    f"{first.platform_label} and {second.platform_label}",
                    entries=(first, second),
                    version=manifest.version,
                )


def _parse_release(
    raw: object,
    index: int,
    name: str,
    default_executable: str,
    runtime: RuntimeConfig,
) -> VersionManifest:
    where = f"Release at index {index}"
    if not isinstance(raw, dict):
        raise ManifestError(f"{where} is not an object.")
    version = str(raw.get("version", "")).strip()
    if not version:
        raise ManifestError(f"{where} has no version.")
    artifacts = raw.get("artifacts")
    if not isinstance(artifacts, list) or not artifacts:
        raise ManifestError(f"Release {version} has no artifacts.")

    entries = tuple(
        _parse_entry(item, f"Release {version} artifact {idx}", runtime) for idx, item in enumerate(artifacts)
    )
    manifest = VersionManifest(
        name=name,
        version=version,
        executable=safe_executable_name(raw.get("executable", default_executable)),
        entries=entries,
        published_at=str(raw.get("published_at", "")).strip(),
        notes_url=str(raw.get("notes_url", "")).strip(),
    )
    check_unambiguous(manifest)
    return manifest


def parse_catalog(data: Mapping[str, Any], runtime: RuntimeConfig | None = None) -> ReleaseCatalog:
    runtime = runtime or RuntimeConfig()
    if not isinstance(data, Mapping):
        raise ManifestError("Catalog must be a JSON object.")

    required = ["schema_version", "name", "executable", "releases"]
    missing = [k for k in required if k not in data]
    if missing:
        raise ManifestError(f"Catalog missing fields: {missing}")
    schema_version = str(data["schema_version"]).strip()
    if schema_version != CATALOG_SCHEMA_VERSION:
        raise ManifestError(
            f"Unsupported catalog schema version {schema_version!r}; expected {CATALOG_SCHEMA_VERSION!r}."
        )

    if runtime.require_signature or is_signed(data):
        try:
            key_id = verify_catalog_signature(data, runtime.manifest_public_keys)
        except ValueError as exc:
            raise ManifestError(str(exc)) from exc
        log.info("Catalog signature verified with key %s", key_id)

    name = str(data["name"]).strip()
    executable = safe_executable_name(data["executable"])
    raw_releases = data["releases"]
    if not isinstance(raw_releases, list) or not raw_releases:
        raise ManifestError("Catalog has no releases.")

    releases: list[VersionManifest] = []
    seen_versions: set[str] = set()
    for idx, raw in enumerate(raw_releases):
        release = _parse_release(raw, idx, name, executable, runtime)
        if release.version in seen_versions:
            raise ManifestError(f"Catalog contains duplicate release version: {release.version}")
        seen_versions.add(release.version)
        releases.append(release)

    return ReleaseCatalog(
        schema_version=schema_version,
        name=name,
        executable=executable,
        releases=tuple(releases),
        homepage=str(data.get("homepage", "")).strip(),
        description=str(data.get("description", "")).strip(),
    )


def latest_release(catalog: ReleaseCatalog) -> VersionManifest:
    # Later entries win ties so an appended re-publication supersedes.
    best = catalog.releases[0]
    for release in catalog.releases[1:]:
        if parse_version(release.version) >= parse_version(best.version):
            best = release
    return best


def select_release(catalog: ReleaseCatalog, version: str | None = None) -> VersionManifest:
    wanted = str(version or "").strip()
    if not wanted or wanted == "latest":
        return latest_release(catalog)
    for release in catalog.releases:
        if release.version == wanted or release.version.lstrip("vV") == wanted.lstrip("vV"):
            return release
    raise ManifestError(
        f"{catalog.name} has no release {wanted!r}; known: {', '.join(catalog.versions())}",
        version=wanted,
    )


def _is_url(source: str) -> bool:
    return source.lower().startswith(("http://", "https://"))


def _fetch_catalog_json(source: str, runtime: RuntimeConfig, session: requests.Session) -> Any:
    try:
        validate_trusted_url(source, runtime.trusted_hosts, allow_http=runtime.allow_insecure_http)
    except ValueError as exc:
        raise UntrustedSource(str(exc)) from exc
    log.info("Fetching catalog from %s", source)
    try:
        resp = session.get(
            source,
            timeout=(runtime.connect_timeout_seconds, runtime.read_timeout_seconds),
        )
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise FetchError(f"Could not fetch catalog {source}: {exc}") from exc
    try:
        validate_trusted_url(str(resp.url), runtime.trusted_hosts, allow_http=runtime.allow_insecure_http)
    except ValueError as exc:
        raise UntrustedSource(str(exc)) from exc
    try:
        return resp.json()
    except ValueError as exc:
        raise ManifestError(f"Catalog at {source} is not valid JSON: {exc}") from exc


def load_catalog(
    source: str,
    runtime: RuntimeConfig | None = None,
    session: requests.Session | None = None,
) -> ReleaseCatalog:
    """Read a catalog from a local JSON file or an http(s) URL."""
    runtime = runtime or RuntimeConfig()
    source = str(source or "").strip()
    if not source:
        raise ManifestError("No catalog source given.")

    if _is_url(source):
        data = _fetch_catalog_json(source, runtime, session or requests.Session())
    else:
        path = Path(source).expanduser()
        log.info("Reading catalog from %s", path)
        try:
            with path.open("r", encoding="utf-8-sig") as fh:
                data = json.load(fh)
        except FileNotFoundError as exc:
            raise ManifestError(f"Catalog file not found: {path}") from exc
        except OSError as exc:
            raise FetchError(f"Cannot read catalog {path}: {exc}") from exc
        except ValueError as exc:
            raise ManifestError(f"Catalog {path} is not valid JSON: {exc}") from exc

    catalog = parse_catalog(data, runtime)
    log.info("Loaded catalog %s with %d release(s)", catalog.name, len(catalog.releases))
    return catalog
