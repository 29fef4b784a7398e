import json
import socketserver
import threading

import pytest
from typer.testing import CliRunner

from owlbridge.cli.main import app
from owlbridge.core.models import END_OF_REQUEST, CompileRequest
from owlbridge.runtime.hmr import MODULE_START
from owlbridge.runtime.service import ServiceHandle, write_service_metadata

runner = CliRunner()

CONFIG = """
resolver:
  ruby_options:
    hmrHook: "App.$render();"
    includePaths: [app]
    redis: true
"""


def _combined_output(result) -> str:
    return f"{result.stdout}{getattr(result, 'stderr', '')}"


class _CompileHandler(socketserver.StreamRequestHandler):
    def handle(self) -> None:
        raw = b""
        while not raw.endswith(END_OF_REQUEST):
            chunk = self.rfile.read(1)
            if not chunk:
                return
            raw += chunk

        request = CompileRequest.from_wire(raw)
        self.server.received.append(request)
        self.wfile.write(json.dumps(self.server.reply).encode("utf-8"))


@pytest.fixture
def threaded_compile_server(socket_dir, monkeypatch):
    monkeypatch.setenv("OWL_TMPDIR", str(socket_dir))

    def start(reply):
        server = socketserver.ThreadingUnixStreamServer(str(socket_dir / "owcs_socket"), _CompileHandler)
        server.received = []
        server.reply = reply
        thread = threading.Thread(target=server.serve_forever, kwargs={"poll_interval": 0.05}, daemon=True)
        thread.start()
        servers.append((server, thread))
        return server

    servers = []
    yield start
    for server, thread in servers:
        server.shutdown()
        server.server_close()
        thread.join(timeout=1)


def test_help_lists_commands():
    result = runner.invoke(app, ["--help"])

    assert result.exit_code == 0
    for command in ("compile", "start", "stop", "status", "options"):
        assert command in result.stdout


def test_options_json_prints_resolved_options(tmp_path):
    (tmp_path / "owlbridge.yaml").write_text(CONFIG)

    result = runner.invoke(app, ["options", "--root", str(tmp_path), "--json"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["hmrHook"] == "App.$render();"
    assert payload["includePaths"] == ["app"]
    assert payload["redis"] == "redis://localhost:6379"
    assert payload["sourceMap"] is False


def test_options_table_output(tmp_path):
    (tmp_path / "owlbridge.yaml").write_text(CONFIG)

    result = runner.invoke(app, ["options", "--root", str(tmp_path)])

    assert result.exit_code == 0
    assert "includePaths" in result.stdout


def test_options_without_section_fails(tmp_path):
    (tmp_path / "owlbridge.yaml").write_text("resolver: {}\n")

    result = runner.invoke(app, ["options", "--root", str(tmp_path)])

    assert result.exit_code == 1
    assert "configured" in _combined_output(result)


def test_compile_rejects_non_ruby_files(tmp_path):
    result = runner.invoke(app, ["compile", str(tmp_path / "main.js"), "--root", str(tmp_path)])

    assert result.exit_code == 1
    assert "Not a Ruby source file" in _combined_output(result)


def test_compile_prints_generated_javascript(tmp_path, threaded_compile_server):
    (tmp_path / "owlbridge.yaml").write_text(CONFIG)
    source = tmp_path / "main.rb"
    source.write_text("puts 'hi'")
    server = threaded_compile_server({"javascript": f"{MODULE_START}'main'] = fn;\n"})

    result = runner.invoke(app, ["compile", str(source), "--root", str(tmp_path)])

    assert result.exit_code == 0, _combined_output(result)
    assert "global.Opal.load.call(global.Opal, 'main');" in result.stdout
    assert "App.$render();" in result.stdout
    assert server.received[0].filename == str(source.resolve())


def test_compile_reports_remote_errors(tmp_path, threaded_compile_server):
    (tmp_path / "owlbridge.yaml").write_text(CONFIG)
    source = tmp_path / "broken.rb"
    source.write_text("def")
    threaded_compile_server(
        {"error": {"name": "SyntaxError", "message": "unexpected end-of-input", "backtrace": ["broken.rb:1"]}}
    )

    result = runner.invoke(app, ["compile", str(source), "--root", str(tmp_path)])

    assert result.exit_code == 1
    output = _combined_output(result)
    assert "SyntaxError" in output
    assert "unexpected" in output


def test_start_reuses_running_server(tmp_path, threaded_compile_server):
    (tmp_path / "owlbridge.yaml").write_text(CONFIG)
    threaded_compile_server({"javascript": "X"})

    result = runner.invoke(app, ["start", "--root", str(tmp_path)])

    assert result.exit_code == 0
    assert "Reusing compile server" in _combined_output(result)


def test_status_reports_absent_server(tmp_path, socket_dir, monkeypatch):
    monkeypatch.setenv("OWL_TMPDIR", str(socket_dir))

    result = runner.invoke(app, ["status", "--root", str(tmp_path)])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["state"] == "absent"
    assert payload["socket_present"] is False
    assert payload["socket_path"] == str(socket_dir / "owcs_socket")


def test_status_reports_stale_metadata(tmp_path, socket_dir, monkeypatch):
    monkeypatch.setenv("OWL_TMPDIR", str(socket_dir))
    monkeypatch.setattr("owlbridge.runtime.service.is_process_alive", lambda pid: False)
    write_service_metadata(
        socket_dir,
        ServiceHandle(pid=424242, command=["owcs"], socket_path=str(socket_dir / "owcs_socket"), started_at="now"),
    )

    result = runner.invoke(app, ["status", "--root", str(tmp_path)])

    assert result.exit_code == 1
    assert json.loads(result.stdout)["state"] == "stale"


def test_stop_cleans_up_bridge_files(tmp_path, socket_dir, monkeypatch):
    monkeypatch.setenv("OWL_TMPDIR", str(socket_dir))
    (tmp_path / "owlbridge.yaml").write_text(CONFIG)
    stop_calls = []
    monkeypatch.setattr("owlbridge.runtime.shutdown.subprocess.run", lambda command, **kwargs: stop_calls.append(command))
    (socket_dir / "owcs_socket").write_text("")
    (socket_dir / "load_paths.json").write_text("{}")

    result = runner.invoke(app, ["stop", "--root", str(tmp_path)])

    assert result.exit_code == 0
    assert stop_calls == [["bundle", "exec", "opal-webpack-compile-server", "stop", "-s", str(socket_dir / "owcs_socket")]]
    assert not socket_dir.exists()
    assert "stop requested" in _combined_output(result)
