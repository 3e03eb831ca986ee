from __future__ import annotations

import json
import os
import tempfile
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


STATE_FILE_SUFFIX = ".install.v1.json"


@dataclass
class InstallState:
    executable: str
    installed_version: str | None = None
    checksum: str | None = None
    artifact_url: str | None = None
    installed_path: str | None = None
    installed_at_utc: str | None = None

    def touch_install_time(self) -> None:
        self.installed_at_utc = datetime.now(timezone.utc).isoformat()


def _state_file(state_dir: Path, executable: str) -> Path:
    return state_dir / f"{executable}{STATE_FILE_SUFFIX}"


def load_install_state(state_dir: Path, executable: str) -> InstallState:
    path = _state_file(state_dir, executable)
    if not path.exists():
        return InstallState(executable=executable)

    # Accept optional UTF-8 BOM from hand edits made with Windows tooling.
    with path.open("r", encoding="utf-8-sig") as fh:
        raw: dict[str, Any] = json.load(fh)

    return InstallState(
        executable=executable,
        installed_version=raw.get("installed_version"),
        checksum=raw.get("checksum"),
        artifact_url=raw.get("artifact_url"),
        installed_path=raw.get("installed_path"),
        installed_at_utc=raw.get("installed_at_utc"),
    )


def save_install_state(state_dir: Path, state: InstallState) -> None:
    path = _state_file(state_dir, state.executable)
    path.parent.mkdir(parents=True, exist_ok=True)
    # Unique temp name so concurrent installs never share a half-written file.
    fd, tmp_name = tempfile.mkstemp(prefix=f".{state.executable}.", suffix=".tmp", dir=path.parent)
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(asdict(state), fh, indent=2, sort_keys=True)
        tmp.replace(path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
