from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _env_list(name: str) -> tuple[str, ...]:
    raw = os.environ.get(name, "")
    return tuple(v.strip() for v in raw.split(",") if v.strip())


def _env_keys(name: str) -> dict[str, str]:
    keys: dict[str, str] = {}
    for item in _env_list(name):
        key_id, sep, value = item.partition("=")
        if not sep or not key_id.strip() or not value.strip():
            raise ValueError(f"{name} entries must look like key_id=base64key, got {item!r}")
        keys[key_id.strip()] = value.strip()
    return keys


@dataclass(frozen=True)
class InstallPaths:
    bin_dir: Path
    data_root: Path
    state_dir: Path
    logs_dir: Path
    doc_dir: Path

    @classmethod
    def default(cls) -> "InstallPaths":
        override_root = os.environ.get("BINFETCH_HOME", "").strip()
        if override_root:
            data_root = Path(override_root)
        elif sys.platform.startswith("win"):
            local_app_data = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
            data_root = local_app_data / "binfetch"
        else:
            xdg = os.environ.get("XDG_DATA_HOME", "").strip()
            data_root = (Path(xdg) if xdg else Path.home() / ".local" / "share") / "binfetch"

        override_bin = os.environ.get("BINFETCH_BIN_DIR", "").strip()
        if override_bin:
            bin_dir = Path(override_bin)
        elif sys.platform.startswith("win"):
            bin_dir = data_root / "bin"
        else:
            bin_dir = Path.home() / ".local" / "bin"
        return cls.at(bin_dir=bin_dir, data_root=data_root)

    @classmethod
    def at(cls, bin_dir: Path, data_root: Path) -> "InstallPaths":
        return cls(
            bin_dir=bin_dir,
            data_root=data_root,
            state_dir=data_root / "state",
            logs_dir=data_root / "logs",
            doc_dir=data_root / "doc",
        )

    def with_bin_dir(self, bin_dir: Path) -> "InstallPaths":
        return InstallPaths.at(bin_dir=bin_dir, data_root=self.data_root)

    def ensure_layout(self) -> None:
        for path in (self.bin_dir, self.data_root, self.state_dir, self.logs_dir):
            path.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class RuntimeConfig:
    manifest_url: str = ""
    download_chunk_size: int = 1024 * 1024
    connect_timeout_seconds: int = 10
    read_timeout_seconds: int = 60
    # Transport-level retries; retrying a failed install is the caller's call.
    max_retries: int = 0
    allow_insecure_http: bool = False
    trusted_hosts: tuple[str, ...] = ()
    require_signature: bool = False
    manifest_public_keys: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        return cls(
            manifest_url=os.environ.get("BINFETCH_MANIFEST_URL", "").strip(),
            download_chunk_size=int(os.environ.get("BINFETCH_DOWNLOAD_CHUNK", str(1024 * 1024))),
            connect_timeout_seconds=int(os.environ.get("BINFETCH_CONNECT_TIMEOUT", "10")),
            read_timeout_seconds=int(os.environ.get("BINFETCH_READ_TIMEOUT", "60")),
            max_retries=int(os.environ.get("BINFETCH_MAX_RETRIES", "0")),
            allow_insecure_http=_env_flag("BINFETCH_ALLOW_INSECURE_HTTP"),
            trusted_hosts=_env_list("BINFETCH_TRUSTED_HOSTS"),
            require_signature=_env_flag("BINFETCH_REQUIRE_SIGNATURE"),
            manifest_public_keys=_env_keys("BINFETCH_MANIFEST_KEYS"),
        )
