from __future__ import annotations

import atexit
import signal
import subprocess

from owlbridge.cli.formatter import OutputFormatter
from owlbridge.core.models import BridgeOptions
from owlbridge.core.session import BridgeSession
from owlbridge.runtime.launcher import build_stop_command
from owlbridge.runtime.service import remove_service_metadata

STOP_TIMEOUT_SECONDS = 10


def shutdown_session(session: BridgeSession) -> bool:
    """
    Tear down the compile server and its files. Runs at most once per session.

    Every step is best effort; a failing step never prevents the next one.
    Returns False when the session was already stopping.
    """
    if session.stopping:
        return False
    session.stopping = True

    socket_path = session.socket_path
    cache_path = session.cache_path
    tmpdir = session.tmpdir

    if cache_path is not None:
        try:
            cache_path.unlink()
        except Exception:
            pass

    try:
        if socket_path is not None and socket_path.exists():
            options = session.options or BridgeOptions()
            OutputFormatter.log(f"Stopping compile server at {socket_path}.", severity="info")
            subprocess.run(
                build_stop_command(options, socket_path),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=STOP_TIMEOUT_SECONDS,
                check=False,
            )
    except Exception:
        pass

    if socket_path is not None:
        try:
            socket_path.unlink()
        except Exception:
            pass

    if tmpdir is not None:
        try:
            remove_service_metadata(tmpdir)
        except Exception:
            pass
        try:
            tmpdir.rmdir()
        except Exception:
            pass

    session.ready = False
    session.starting = False
    return True


def install_exit_hooks(session: BridgeSession) -> None:
    """Run shutdown_session(session) on interpreter exit and on SIGTERM, once."""
    if session.exit_hooks_installed:
        return
    session.exit_hooks_installed = True

    atexit.register(shutdown_session, session)

    previous_handler = signal.getsignal(signal.SIGTERM)

    def handle_sigterm(signum, frame):
        shutdown_session(session)
        if previous_handler is signal.SIG_IGN:
            return
        if callable(previous_handler):
            previous_handler(signum, frame)
            return
        raise SystemExit(128 + signum)

    try:
        signal.signal(signal.SIGTERM, handle_sigterm)
    except ValueError:
        # signal handlers can only be installed from the main thread
        OutputFormatter.log("SIGTERM cleanup not installed outside the main thread.", severity="warning")
