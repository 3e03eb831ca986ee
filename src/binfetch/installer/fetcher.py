from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from binfetch.common.config import RuntimeConfig
from binfetch.common.errors import FetchError, IntegrityViolation, UntrustedSource
from binfetch.common.hashing import digests_equal, new_digest
from binfetch.common.manifest_security import validate_trusted_url
from binfetch.common.types import ArtifactEntry


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DownloadProgress:
    url: str
    bytes_done: int
    bytes_total: int | None


def build_session(runtime: RuntimeConfig) -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=runtime.max_retries,
        connect=runtime.max_retries,
        read=runtime.max_retries,
        status=runtime.max_retries,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET", "HEAD"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class ArtifactFetcher:
    def __init__(self, runtime: RuntimeConfig, session: requests.Session | None = None):
        self.runtime = runtime
        self.session = session or build_session(runtime)

    def _check_url(self, url: str, entry: ArtifactEntry) -> None:
        try:
            validate_trusted_url(url, self.runtime.trusted_hosts, allow_http=self.runtime.allow_insecure_http)
        except ValueError as exc:
            raise UntrustedSource(str(exc), entry=entry) from exc

    def _download(
        self,
        entry: ArtifactEntry,
        progress_callback: Callable[[DownloadProgress], None] | None = None,
    ) -> tuple[bytes, str]:
        self._check_url(entry.url, entry)
        h = new_digest(entry.digest_algorithm)
        chunks: list[bytes] = []
        bytes_done = 0
        last_emitted = 0
        emit_threshold = max(4 * 1024 * 1024, self.runtime.download_chunk_size * 4)

        log.info("Downloading %s", entry.url)
        try:
            with self.session.get(
                entry.url,
                stream=True,
                timeout=(self.runtime.connect_timeout_seconds, self.runtime.read_timeout_seconds),
            ) as resp:
                resp.raise_for_status()
                self._check_url(str(resp.url), entry)
                content_len_raw = resp.headers.get("Content-Length", "").strip()
                bytes_total = int(content_len_raw) if content_len_raw.isdigit() else None
                if bytes_total is None and entry.size > 0:
                    bytes_total = entry.size
                for chunk in resp.iter_content(chunk_size=self.runtime.download_chunk_size):
                    if not chunk:
                        continue
                    h.update(chunk)
                    chunks.append(chunk)
                    bytes_done += len(chunk)
                    if progress_callback is not None and (bytes_done - last_emitted) >= emit_threshold:
                        progress_callback(DownloadProgress(entry.url, bytes_done, bytes_total))
                        last_emitted = bytes_done
        except requests.RequestException as exc:
            raise FetchError(f"Download of {entry.url} failed: {exc}", entry=entry) from exc
        except OSError as exc:
            raise FetchError(f"Download of {entry.url} failed: {exc}", entry=entry) from exc

        if entry.size > 0 and bytes_done != entry.size:
            raise FetchError(
                f"Download of {entry.url} returned {bytes_done} bytes, expected {entry.size}",
                entry=entry,
            )
        if progress_callback is not None:
            progress_callback(DownloadProgress(entry.url, bytes_done, bytes_total or bytes_done))
        return b"".join(chunks), h.hexdigest()

    def fetch(
        self,
        entry: ArtifactEntry,
        progress_callback: Callable[[DownloadProgress], None] | None = None,
    ) -> tuple[bytes, str]:
        """Download ``entry`` and return its bytes with their computed digest."""
        return self._download(entry, progress_callback=progress_callback)

    @staticmethod
    def verify(entry: ArtifactEntry, data: bytes, digest: str) -> bytes:
        if not digests_equal(entry.checksum, digest):
            log.error(
                "Checksum mismatch for %s: expected %s got %s",
                entry.url,
                entry.checksum,
                digest,
            )
            raise IntegrityViolation(
                f"{entry.digest_algorithm} mismatch for {entry.url}: {digest} != {entry.checksum}",
                expected=entry.checksum,
                actual=digest,
                entry=entry,
            )
        log.info("Verified %s (%d bytes)", entry.url, len(data))
        return data

    def fetch_and_verify(
        self,
        entry: ArtifactEntry,
        progress_callback: Callable[[DownloadProgress], None] | None = None,
    ) -> bytes:
        data, digest = self.fetch(entry, progress_callback=progress_callback)
        return self.verify(entry, data, digest)
