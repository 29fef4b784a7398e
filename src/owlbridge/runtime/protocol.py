"""Client side of the compile server socket protocol.

Protocol: one request per Unix stream connection.
    Request:  {"filename": "...", "source_map": false}\\x04
    Reply:    {"javascript": "..."} or {"error": {"name", "message", "backtrace"}}
The reply has no framing: it is every byte written before the server closes.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Tuple

from owlbridge.cli.formatter import OutputFormatter
from owlbridge.core.models import CompileRequest, CompileResult
from owlbridge.core.session import BridgeSession
from owlbridge.runtime.hmr import wrap_with_hot_reloader
from owlbridge.utils.diagnostics import RemoteCompileError, ServiceUnreachableError

CONNECT_RETRY_DELAY = 0.1


async def open_service_connection(socket_path: Path) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    return await asyncio.open_unix_connection(str(socket_path))


async def _connect_with_retry(session: BridgeSession) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    # The listen queue can refuse connections for a while even though the
    # server is alive; only that case is retried.
    limit = session.require_options().connect_retry_limit
    refused = 0
    while True:
        try:
            return await open_service_connection(session.socket_path)
        except ConnectionRefusedError as exc:
            refused += 1
            if refused > limit:
                raise ServiceUnreachableError(
                    f"owlbridge: Compile server at {session.socket_path} refused {refused} connections."
                ) from exc
            if refused == 1:
                OutputFormatter.log(
                    f"Compile server refused connection at {session.socket_path}; retrying.",
                    severity="warning",
                )
            await asyncio.sleep(CONNECT_RETRY_DELAY)


async def exchange(session: BridgeSession, request: CompileRequest) -> CompileResult:
    """Send one request on a fresh connection and parse the complete reply."""
    reader, writer = await _connect_with_retry(session)
    try:
        writer.write(request.to_wire())
        await writer.drain()
        payload = await reader.read()
    finally:
        writer.close()
        await writer.wait_closed()

    return CompileResult.from_wire(payload)


async def delegate_compilation(session: BridgeSession, request: CompileRequest) -> str:
    """Compile one source file on the server and return its code with the hot reloader appended."""
    result = await exchange(session, request)

    if result.error is not None:
        raise RemoteCompileError(
            name=result.error.name,
            message=result.error.message,
            backtrace=result.error.backtrace_text(),
            filename=request.filename,
        )

    return wrap_with_hot_reloader(result, session.require_options().hmr_hook)
