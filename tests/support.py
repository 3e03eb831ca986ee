from __future__ import annotations

import hashlib
import io
import json
import tarfile
import zipfile

import requests


def zip_bytes(files: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return buf.getvalue()


def tar_gz_bytes(files: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def artifact(os_name: str, arch: str, bits: int | None, data: bytes = b"x", **extra) -> dict:
    raw = {
        "os": os_name,
        "arch": arch,
        "url": f"https://downloads.example.com/tool_{os_name}_{arch}_{bits or 'any'}.zip",
        "sha256": sha256(data),
    }
    if bits is not None:
        raw["bits"] = bits
    raw.update(extra)
    return raw


def catalog(*releases: dict, executable: str = "tool") -> dict:
    return {
        "schema_version": "1",
        "name": "tool",
        "executable": executable,
        "homepage": "https://example.com/tool",
        "releases": list(releases),
    }


def release(version: str, *artifacts: dict) -> dict:
    return {
        "version": version,
        "published_at": "2026-01-01T00:00:00Z",
        "notes_url": f"https://example.com/tool/{version}",
        "artifacts": list(artifacts),
    }


class FakeResponse:
    def __init__(self, url: str, body: bytes = b"", status: int = 200, error: Exception | None = None):
        self.url = url
        self.body = body
        self.status_code = status
        self.error = error
        self.headers = {"Content-Length": str(len(body))}

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc) -> None:
        return None

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error for {self.url}")

    def iter_content(self, chunk_size: int = 1024):
        if self.error is not None:
            raise self.error
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start : start + chunk_size]

    def json(self):
        return json.loads(self.body.decode("utf-8"))


class FakeSession:
    """Serves canned bodies by URL; anything else is a connection error."""

    def __init__(self, bodies: dict[str, bytes] | None = None):
        self.bodies = dict(bodies or {})
        self.failures: dict[str, list[Exception]] = {}
        self.calls: list[str] = []

    def fail_next(self, url: str, exc: Exception) -> None:
        self.failures.setdefault(url, []).append(exc)

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.calls.append(url)
        pending = self.failures.get(url)
        if pending:
            raise pending.pop(0)
        if url not in self.bodies:
            raise requests.ConnectionError(f"no route to {url}")
        return FakeResponse(url, self.bodies[url])
