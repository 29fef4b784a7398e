from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Tuple

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from owlbridge.config.loader import DEFAULT_CONFIG_NAME, load_config, ruby_options_section
from owlbridge.core.models import BridgeOptions
from owlbridge.utils.diagnostics import BridgeConfigurationError

SOCKET_NAME = "owcs_socket"
CACHE_NAME = "load_paths.json"
TMPDIR_ENV_VAR = "OWL_TMPDIR"

READY_POLL_INTERVAL = 0.05
READY_ATTEMPT_LIMIT = 600


class BridgeEnvironment(BaseSettings):
    """
    Process environment consumed by the bridge (OWL_* variables).
    """
    model_config = SettingsConfigDict(env_prefix='OWL_', extra='ignore')

    tmpdir: Optional[Path] = None


class BridgeSession:
    """
    State shared by every compilation request of one process.

    Each field has a single writer: options and paths are set by the launcher,
    `ready` by the readiness waiter, `stopping` by the shutdown hook. The start
    transition (check `starting`, set it, spawn) runs without an await in
    between, so concurrent coroutines on one event loop cannot both launch.
    """

    def __init__(
        self,
        root_dir: Path = Path("."),
        config_path: Optional[Path] = None,
        options: Optional[BridgeOptions] = None,
        tmpdir: Optional[Path] = None,
        ready_poll_interval: float = READY_POLL_INTERVAL,
        ready_attempt_limit: int = READY_ATTEMPT_LIMIT,
    ) -> None:
        self.root_dir = Path(root_dir)
        self.config_path = Path(config_path) if config_path is not None else self.root_dir / DEFAULT_CONFIG_NAME
        self.options: Optional[BridgeOptions] = options
        self.options_resolved = options is not None
        self.ready_poll_interval = ready_poll_interval
        self.ready_attempt_limit = ready_attempt_limit

        self.tmpdir: Optional[Path] = Path(tmpdir) if tmpdir is not None else None
        self.socket_path: Optional[Path] = None
        self.cache_path: Optional[Path] = None

        self.starting = False
        self.ready = False
        self.stopping = False
        self.wait_attempts = 0
        self.service = None
        self.exit_hooks_installed = False

    def __repr__(self) -> str:
        return (
            f"BridgeSession(socket_path={self.socket_path!s}, starting={self.starting}, "
            f"ready={self.ready}, stopping={self.stopping})"
        )

    @property
    def is_configured(self) -> bool:
        return self.resolve_options() is not None

    def resolve_options(self) -> Optional[BridgeOptions]:
        """Load options from the host config once; None means the bridge is inert."""
        if self.options_resolved:
            return self.options

        config = load_config(self.config_path)
        section = ruby_options_section(config)
        if section is not None:
            try:
                self.options = BridgeOptions.model_validate(section)
            except ValidationError as exc:
                raise BridgeConfigurationError(
                    f"Invalid `resolver.ruby_options` in {self.config_path}: {exc}"
                ) from exc

        self.options_resolved = True
        return self.options

    def require_options(self) -> BridgeOptions:
        options = self.resolve_options()
        if options is None:
            raise BridgeConfigurationError(
                f"No `resolver.ruby_options` section found in {self.config_path}; "
                "the Ruby compile bridge is not configured."
            )
        return options

    def resolve_tmpdir(self) -> Path:
        """Return the directory holding the socket and cache, creating one when none is designated."""
        if self.tmpdir is None:
            env_tmpdir = BridgeEnvironment().tmpdir
            if env_tmpdir is not None:
                self.tmpdir = env_tmpdir
            else:
                self.tmpdir = Path(tempfile.mkdtemp(prefix="owl"))
                # Sibling worker processes must agree on the socket location.
                os.environ[TMPDIR_ENV_VAR] = str(self.tmpdir)

        self.tmpdir.mkdir(parents=True, exist_ok=True)
        return self.tmpdir

    def resolve_paths(self) -> Tuple[Path, Path]:
        """Compute socket and cache paths once; later calls return the same paths."""
        if self.socket_path is None:
            tmpdir = self.resolve_tmpdir()
            self.socket_path = tmpdir / SOCKET_NAME
            self.cache_path = tmpdir / CACHE_NAME
        return self.socket_path, self.cache_path

    def socket_exists(self) -> bool:
        return self.socket_path is not None and self.socket_path.exists()

    def mark_ready(self) -> None:
        self.ready = True
        self.starting = False

    def shutdown(self) -> bool:
        from owlbridge.runtime.shutdown import shutdown_session

        return shutdown_session(self)

    def __enter__(self) -> "BridgeSession":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    async def __aenter__(self) -> "BridgeSession":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.shutdown()


_session: Optional[BridgeSession] = None


def get_session(root_dir: Optional[Path] = None, config_path: Optional[Path] = None) -> BridgeSession:
    """Return the process-wide session, creating it on first use."""
    global _session
    if _session is None:
        _session = BridgeSession(
            root_dir=Path(root_dir) if root_dir is not None else Path("."),
            config_path=config_path,
        )
    return _session


def reset_session() -> None:
    """Forget the process-wide session (the next get_session() starts fresh)."""
    global _session
    _session = None
