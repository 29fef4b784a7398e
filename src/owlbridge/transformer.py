from __future__ import annotations

import hashlib
import inspect
from pathlib import Path
from typing import Any, Optional, Protocol, Union

from owlbridge.core.models import CompileRequest
from owlbridge.core.session import BridgeSession, get_session
from owlbridge.runtime.launcher import ensure_server_running
from owlbridge.runtime.readiness import wait_for_socket_and_delegate
from owlbridge.runtime.shutdown import install_exit_hooks

RUBY_SUFFIX = ".rb"


class UpstreamTransformer(Protocol):
    """The bundler's own transform step that runs after the bridge."""

    def transform(self, filename: str, data: bytes, options: Any) -> Any:
        ...

    def get_cache_key(self) -> str:
        ...


def is_ruby_source(filename: Union[str, Path]) -> bool:
    return str(filename).endswith(RUBY_SUFFIX)


class RubyTransformer:
    """
    Transformer front end: Ruby sources are compiled by the compile server,
    then every file continues through the upstream transformer.
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        upstream: Optional[UpstreamTransformer] = None,
        config_path: Optional[Path] = None,
        session: Optional[BridgeSession] = None,
    ) -> None:
        self.project_root = Path(project_root)
        self.upstream = upstream
        if session is None:
            session = get_session(self.project_root, config_path=config_path)
            install_exit_hooks(session)
        self.session = session

    async def compile(self, filename: Union[str, Path]) -> str:
        """Compile one Ruby file and return javascript with the hot reloader appended."""
        session = self.session
        if not session.ready and not session.starting:
            ensure_server_running(session)

        options = session.require_options()
        request = CompileRequest(filename=str(filename), source_map=options.source_map)
        return await wait_for_socket_and_delegate(session, request)

    async def transform(self, filename: Union[str, Path], data: bytes, options: Any = None) -> Any:
        if is_ruby_source(filename):
            compiled_code = await self.compile(filename)
            data = compiled_code.encode("utf-8")

        if self.upstream is None:
            return data

        result = self.upstream.transform(str(filename), data, options)
        if inspect.isawaitable(result):
            result = await result
        return result

    def get_cache_key(self) -> str:
        if self.upstream is not None:
            return self.upstream.get_cache_key()

        options = self.session.resolve_options()
        fingerprint = options.model_dump_json() if options is not None else ""
        return hashlib.sha1(f"owlbridge:{fingerprint}".encode("utf-8")).hexdigest()
