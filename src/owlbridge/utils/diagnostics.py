from typing import Optional
from pydantic import BaseModel

class BridgeDiagnostic(BaseModel):
    """
    Standardized error reporting object for compile failures reported by the service.
    """
    file_path: str
    error_code: str
    message: str
    severity: str = "error" # 'error', 'warning', 'critical'
    backtrace: Optional[str] = None

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message} (at {self.file_path})"


class BridgeError(Exception):
    """Base class for every failure raised by the compilation bridge."""


class BridgeConfigurationError(BridgeError):
    """
    Raised when the host config has no usable `resolver.ruby_options` section
    and a source that needs the compile server is requested.
    """


class ServiceLaunchError(BridgeError):
    """Raised when the external compile server process cannot be spawned."""

    def __init__(self, message: str, command: Optional[list] = None):
        self.command = command
        super().__init__(message)


class ServiceUnreachableError(BridgeError):
    """Raised when the compile server socket never became usable."""


class BridgeProtocolError(BridgeError):
    """Raised when the compile server answers with a payload the bridge cannot use."""


class RemoteCompileError(BridgeError):
    """
    Exception raised when the compile server reports an error for a source file,
    carrying the remote error name, message and backtrace.
    """
    def __init__(self, name: str, message: str, backtrace: str = "", filename: str = None):
        self.name = name
        self.message = message
        self.backtrace = backtrace
        self.filename = filename
        ctx = f" while compiling '{filename}'" if filename else ""
        super().__init__(
            f"owlbridge: An error occurred{ctx}!\n{name}\n{message}\n{backtrace}"
        )

    def to_diagnostic(self) -> BridgeDiagnostic:
        return BridgeDiagnostic(
            file_path=self.filename or "unknown",
            error_code=self.name,
            message=self.message,
            backtrace=self.backtrace or None,
        )
