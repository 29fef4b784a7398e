import asyncio
import contextlib
import json
import shutil
import sys
import tempfile
from pathlib import Path

import pytest

# Ensure src/ is in the python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from owlbridge.core.models import END_OF_REQUEST, BridgeOptions, CompileRequest  # noqa: E402
from owlbridge.core.session import BridgeSession, reset_session  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    monkeypatch.delenv("OWL_TMPDIR", raising=False)
    reset_session()
    yield
    reset_session()


@pytest.fixture
def root_dir(tmp_path):
    """
    Returns a temporary directory to act as the project root for tests.
    """
    return tmp_path


@pytest.fixture
def socket_dir():
    """
    Short temp directory for Unix sockets (pytest's tmp_path can exceed AF_UNIX path limits).
    """
    path = Path(tempfile.mkdtemp(prefix="owl-"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def make_session(root_dir, socket_dir):
    def factory(**overrides):
        params = {
            "root_dir": root_dir,
            "options": BridgeOptions(),
            "tmpdir": socket_dir,
            "ready_poll_interval": 0,
        }
        params.update(overrides)
        return BridgeSession(**params)

    return factory


@pytest.fixture
def mock_compile_server():
    """
    Returns an async context manager serving the compile protocol on a Unix socket.

    `reply` is a payload dict or a callable taking the parsed CompileRequest.
    The yielded list collects every request received.
    """

    @contextlib.asynccontextmanager
    async def serve(socket_path, reply):
        received = []

        async def handle(reader, writer):
            raw = await reader.readuntil(END_OF_REQUEST)
            request = CompileRequest.from_wire(raw)
            received.append(request)
            payload = reply(request) if callable(reply) else reply
            writer.write(json.dumps(payload).encode("utf-8"))
            await writer.drain()
            writer.close()
            await writer.wait_closed()

        server = await asyncio.start_unix_server(handle, path=str(socket_path))
        try:
            yield received
        finally:
            server.close()
            await server.wait_closed()

    return serve
