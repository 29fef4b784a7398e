"""Compile server lifecycle, socket protocol and hot reload components."""

from owlbridge.runtime.hmr import MODULE_START, extract_module_id, wrap_with_hot_reloader
from owlbridge.runtime.launcher import (
	build_start_command,
	build_stop_command,
	ensure_server_running,
)
from owlbridge.runtime.protocol import delegate_compilation
from owlbridge.runtime.readiness import wait_for_socket_and_delegate, wait_until_ready
from owlbridge.runtime.service import (
	ServiceHandle,
	ServiceProbeResult,
	ServiceState,
	is_process_alive,
	probe_service_state,
)
from owlbridge.runtime.shutdown import install_exit_hooks, shutdown_session

__all__ = [
	"MODULE_START",
	"ServiceHandle",
	"ServiceProbeResult",
	"ServiceState",
	"build_start_command",
	"build_stop_command",
	"delegate_compilation",
	"ensure_server_running",
	"extract_module_id",
	"install_exit_hooks",
	"is_process_alive",
	"probe_service_state",
	"shutdown_session",
	"wait_for_socket_and_delegate",
	"wait_until_ready",
	"wrap_with_hot_reloader",
]
