from __future__ import annotations

import asyncio

from owlbridge.cli.formatter import OutputFormatter
from owlbridge.core.models import CompileRequest
from owlbridge.core.session import BridgeSession
from owlbridge.runtime.protocol import delegate_compilation
from owlbridge.utils.diagnostics import ServiceUnreachableError


async def wait_until_ready(session: BridgeSession) -> None:
    """
    Suspend until the compile server socket exists.

    Every poll that finds no socket counts against the session-wide attempt
    budget, so concurrent waiters share one bound.
    """
    while not session.ready:
        if session.socket_exists():
            session.mark_ready()
            OutputFormatter.log(f"Compile server ready at {session.socket_path}.", severity="success")
            return

        session.wait_attempts += 1
        if session.wait_attempts > session.ready_attempt_limit:
            raise ServiceUnreachableError(
                f"owlbridge: Unable to connect to compile server at {session.socket_path} "
                f"after {session.ready_attempt_limit} attempts."
            )
        await asyncio.sleep(session.ready_poll_interval)


async def wait_for_socket_and_delegate(session: BridgeSession, request: CompileRequest) -> str:
    await wait_until_ready(session)
    return await delegate_compilation(session, request)
