import asyncio
import typer
from pathlib import Path
from typing import Optional

from owlbridge.cli.formatter import OutputFormatter
from owlbridge.core.session import BridgeEnvironment, BridgeSession
from owlbridge.runtime.launcher import ensure_server_running
from owlbridge.runtime.readiness import wait_until_ready
from owlbridge.runtime.service import ServiceState, probe_service_state
from owlbridge.runtime.shutdown import shutdown_session
from owlbridge.transformer import RubyTransformer, is_ruby_source
from owlbridge.utils.diagnostics import BridgeError, RemoteCompileError

app = typer.Typer(name="owlbridge", help="Ruby compile server bridge", rich_markup_mode=None)

ROOT_OPTION = typer.Option(Path("."), "--root", "-r", help="Project root directory")
CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Host config file (defaults to <root>/owlbridge.yaml)")


def _open_session(root: Path, config: Optional[Path]) -> BridgeSession:
    # Without OWL_TMPDIR the CLI keeps its socket under the project so that
    # separate invocations find the same compile server.
    tmpdir = BridgeEnvironment().tmpdir or root / ".owlbridge"
    return BridgeSession(root_dir=root, config_path=config, tmpdir=tmpdir)


def _fail(exc: BridgeError) -> None:
    if isinstance(exc, RemoteCompileError):
        OutputFormatter.print_diagnostics([exc.to_diagnostic()])
        OutputFormatter.log(f"{exc.name}: {exc.message}", severity="error")
    else:
        OutputFormatter.log(str(exc) or type(exc).__name__, severity="error")
    raise typer.Exit(code=1)


@app.command("compile")
def compile_file(
    filename: Path = typer.Argument(..., help="Ruby source file to compile"),
    root: Path = ROOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
):
    """
    Compile a Ruby file on the compile server and print the generated javascript.
    """
    if not is_ruby_source(filename):
        OutputFormatter.log(f"Not a Ruby source file: {filename}", severity="error")
        raise typer.Exit(code=1)

    session = _open_session(root, config)
    transformer = RubyTransformer(root, session=session)
    try:
        javascript = asyncio.run(transformer.compile(filename.resolve()))
    except BridgeError as exc:
        _fail(exc)

    OutputFormatter.print_data(javascript)


@app.command()
def start(
    root: Path = ROOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
):
    """
    Start the compile server (if needed) and wait until its socket is ready.
    """
    session = _open_session(root, config)
    try:
        ensure_server_running(session)
        asyncio.run(wait_until_ready(session))
    except BridgeError as exc:
        _fail(exc)

    OutputFormatter.log(f"Compile server listening on {session.socket_path}.", severity="success")


@app.command()
def stop(
    root: Path = ROOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
):
    """
    Stop the compile server and remove its socket and cache files.
    """
    session = _open_session(root, config)
    try:
        session.resolve_options()
    except BridgeError as exc:
        OutputFormatter.log(f"Ignoring unusable config while stopping: {exc}", severity="warning")
    session.resolve_paths()

    had_socket = session.socket_exists()
    shutdown_session(session)
    if had_socket:
        OutputFormatter.log("Compile server stop requested; socket and cache removed.", severity="info")
    else:
        OutputFormatter.log("No compile server socket found; cleaned up bridge files.", severity="info")


@app.command()
def status(
    root: Path = ROOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
):
    """
    Report whether a compile server is serving this project.
    """
    session = _open_session(root, config)
    socket_path, cache_path = session.resolve_paths()
    probe = probe_service_state(session.tmpdir, socket_path)

    OutputFormatter.print_data(
        {
            "state": probe.state.value,
            "reason": probe.reason,
            "socket_path": str(socket_path),
            "socket_present": probe.socket_present,
            "cache_path": str(cache_path),
            "pid": probe.handle.pid if probe.handle is not None else None,
        }
    )
    if probe.state == ServiceState.STALE:
        raise typer.Exit(code=1)


@app.command()
def options(
    root: Path = ROOT_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Print options as JSON"),
):
    """
    Print the bridge options resolved from the host config.
    """
    session = _open_session(root, config)
    try:
        resolved = session.require_options()
    except BridgeError as exc:
        _fail(exc)

    if json_output:
        OutputFormatter.print_data(resolved)
    else:
        OutputFormatter.print_options(resolved)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
