from __future__ import annotations

import json
import os
import subprocess
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, PrivateAttr, ValidationError


class ServiceState(str, Enum):
    """Classification of compile server metadata/liveness state."""

    ABSENT = "absent"
    RUNNING = "running"
    STALE = "stale"


class ServiceHandle(BaseModel):
    """Launched compile server process, persisted next to its socket."""

    pid: int = Field(gt=0)
    command: List[str]
    socket_path: str
    started_at: str

    _process: Optional[subprocess.Popen] = PrivateAttr(default=None)

    def attach_process(self, process: subprocess.Popen) -> "ServiceHandle":
        self._process = process
        return self

    def is_alive(self) -> bool:
        """Return True while the launched process still exists. No restart is attempted."""
        if self._process is not None:
            # poll() also reaps a server that already exited
            return self._process.poll() is None
        return is_process_alive(self.pid)


class ServiceProbeResult(BaseModel):
    """Result payload from probing compile server metadata/liveness."""

    state: ServiceState
    handle: ServiceHandle | None = None
    metadata_path: str
    socket_present: bool = False
    reason: str


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def service_metadata_path(tmpdir: Path) -> Path:
    """Return the compile server metadata file path for a bridge temp directory."""
    return tmpdir / "service.json"


def write_service_metadata(tmpdir: Path, handle: ServiceHandle) -> Path:
    """Persist compile server metadata for a bridge temp directory."""
    metadata_file = service_metadata_path(tmpdir)
    metadata_file.parent.mkdir(parents=True, exist_ok=True)
    metadata_file.write_text(handle.model_dump_json(indent=2), encoding="utf-8")
    return metadata_file


def read_service_metadata(tmpdir: Path) -> ServiceHandle | None:
    """Load persisted metadata, or None when it is missing or unreadable."""
    metadata_file = service_metadata_path(tmpdir)
    try:
        payload = json.loads(metadata_file.read_text(encoding="utf-8"))
        return ServiceHandle.model_validate(payload)
    except (OSError, json.JSONDecodeError, ValidationError):
        return None


def is_process_alive(pid: int) -> bool:
    """Return True when a process id appears to be alive on this host."""
    if pid <= 0:
        return False

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False

    return True


def probe_service_state(tmpdir: Path, socket_path: Path) -> ServiceProbeResult:
    """Classify the compile server for a temp directory as absent, running, or stale."""
    metadata_file = service_metadata_path(tmpdir)
    socket_present = socket_path.exists()

    if not metadata_file.exists():
        if socket_present:
            return ServiceProbeResult(
                state=ServiceState.RUNNING,
                metadata_path=str(metadata_file),
                socket_present=True,
                reason="Socket exists; compile server is owned by another session.",
            )
        return ServiceProbeResult(
            state=ServiceState.ABSENT,
            metadata_path=str(metadata_file),
            reason="Compile server metadata file not found.",
        )

    handle = read_service_metadata(tmpdir)
    if handle is None:
        return ServiceProbeResult(
            state=ServiceState.STALE,
            metadata_path=str(metadata_file),
            socket_present=socket_present,
            reason="Invalid compile server metadata payload.",
        )

    if not handle.is_alive():
        return ServiceProbeResult(
            state=ServiceState.STALE,
            handle=handle,
            metadata_path=str(metadata_file),
            socket_present=socket_present,
            reason=f"Compile server process pid={handle.pid} is not alive.",
        )

    return ServiceProbeResult(
        state=ServiceState.RUNNING,
        handle=handle,
        metadata_path=str(metadata_file),
        socket_present=socket_present,
        reason="Compile server process is alive.",
    )


def remove_service_metadata(tmpdir: Path) -> bool:
    """Remove persisted metadata and return whether anything was removed."""
    metadata_file = service_metadata_path(tmpdir)
    if metadata_file.exists():
        metadata_file.unlink()
        return True
    return False
