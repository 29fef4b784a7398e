from __future__ import annotations

from owlbridge.core.models import BridgeOptions, CompileRequest, CompileResult
from owlbridge.core.session import BridgeSession, get_session, reset_session
from owlbridge.transformer import RubyTransformer
from owlbridge.utils.diagnostics import (
	BridgeConfigurationError,
	BridgeError,
	BridgeProtocolError,
	RemoteCompileError,
	ServiceLaunchError,
	ServiceUnreachableError,
)

__all__ = [
	"BridgeConfigurationError",
	"BridgeError",
	"BridgeOptions",
	"BridgeProtocolError",
	"BridgeSession",
	"CompileRequest",
	"CompileResult",
	"RemoteCompileError",
	"RubyTransformer",
	"ServiceLaunchError",
	"ServiceUnreachableError",
	"get_session",
	"reset_session",
]
