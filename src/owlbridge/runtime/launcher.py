from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import List, Optional

from owlbridge.cli.formatter import OutputFormatter
from owlbridge.core.models import BridgeOptions
from owlbridge.core.session import BridgeSession
from owlbridge.runtime.service import ServiceHandle, utc_now_iso, write_service_metadata
from owlbridge.utils.diagnostics import ServiceLaunchError


def build_start_command(
    options: BridgeOptions,
    cache_path: Path,
    socket_path: Path,
    concurrency: Optional[int] = None,
) -> List[str]:
    """Build the argv that starts the compile server; each option maps to one repeated flag."""
    workers = concurrency if concurrency is not None else (os.cpu_count() or 1)
    command = [
        *options.service_command,
        "start",
        str(workers),
        "-l",
        str(cache_path),
        "-s",
        str(socket_path),
    ]

    if options.dynamic_require_severity:
        command.extend(["-d", options.dynamic_require_severity])

    if options.memcached:
        command.extend(["-m", options.memcached])
    elif options.redis:
        command.extend(["-e", options.redis])

    for include_path in options.include_paths:
        command.extend(["-I", include_path])
    for required_module in options.require_modules:
        command.extend(["-r", required_module])
    for flag_on in options.compiler_flags_on:
        command.extend(["-t", flag_on])
    for flag_off in options.compiler_flags_off:
        command.extend(["-f", flag_off])

    return command


def build_stop_command(options: BridgeOptions, socket_path: Path) -> List[str]:
    return [*options.service_command, "stop", "-s", str(socket_path)]


def spawn_detached(command: List[str], cwd: Optional[Path] = None) -> subprocess.Popen:
    """Launch a process in its own session with no inherited stdio so it outlives this one."""
    try:
        return subprocess.Popen(
            command,
            cwd=str(cwd) if cwd is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
            close_fds=True,
        )
    except OSError as exc:
        raise ServiceLaunchError(f"Unable to start compile server `{command[0]}`: {exc}", command=command) from exc


def ensure_server_running(session: BridgeSession) -> None:
    """
    Make sure exactly one compile server serves this session.

    Does nothing once the session is starting or ready. When the socket is
    already on disk another session owns the server and it is reused as is.
    Contains no await so the starting check and the launch happen together.
    A session that has been shut down never launches again.
    """
    if session.stopping:
        raise ServiceLaunchError(
            f"Compile server session for {session.root_dir} has been shut down; not launching again."
        )
    if session.ready or session.starting:
        return

    options = session.require_options()
    socket_path, cache_path = session.resolve_paths()

    if socket_path.exists():
        session.mark_ready()
        OutputFormatter.log(f"Reusing compile server at {socket_path}.", severity="info")
        return

    session.starting = True
    command = build_start_command(options, cache_path, socket_path)
    OutputFormatter.log(f"Starting compile server: {' '.join(command)}", severity="info")

    try:
        process = spawn_detached(command, cwd=session.root_dir)
    except ServiceLaunchError:
        session.starting = False
        raise

    session.service = ServiceHandle(
        pid=process.pid,
        command=command,
        socket_path=str(socket_path),
        started_at=utc_now_iso(),
    ).attach_process(process)
    write_service_metadata(session.tmpdir, session.service)
