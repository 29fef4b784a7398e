import json
from typing import Any, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from owlbridge.utils.diagnostics import BridgeProtocolError


DEFAULT_MEMCACHED = "localhost:11211"
DEFAULT_REDIS = "redis://localhost:6379"
DEFAULT_SERVICE_COMMAND = ["bundle", "exec", "opal-webpack-compile-server"]
DEFAULT_CONNECT_RETRY_LIMIT = 600

# Control byte that ends a request and tells the service to start compiling.
END_OF_REQUEST = b"\x04"


class BridgeOptions(BaseModel):
    """
    Compiler bridge options (the 'resolver.ruby_options' section of the host config).

    Keys are read in the host's camelCase spelling; snake_case is accepted as well.
    """
    model_config = ConfigDict(extra='ignore', alias_generator=to_camel, populate_by_name=True)

    hmr_hook: str = ""
    source_map: bool = False
    include_paths: List[str] = Field(default_factory=list)
    require_modules: List[str] = Field(default_factory=list)
    dynamic_require_severity: Optional[str] = None
    compiler_flags_on: List[str] = Field(default_factory=list)
    compiler_flags_off: List[str] = Field(default_factory=list)
    memcached: Optional[str] = None
    redis: Optional[str] = None
    service_command: List[str] = Field(default_factory=lambda: list(DEFAULT_SERVICE_COMMAND), min_length=1)
    connect_retry_limit: int = Field(default=DEFAULT_CONNECT_RETRY_LIMIT, ge=0)

    @field_validator(
        "include_paths",
        "require_modules",
        "compiler_flags_on",
        "compiler_flags_off",
        mode="before",
    )
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("hmr_hook", mode="before")
    @classmethod
    def _none_is_blank(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("memcached", mode="before")
    @classmethod
    def _resolve_memcached(cls, value: Any) -> Any:
        if value is True:
            return DEFAULT_MEMCACHED
        if value is False:
            return None
        return value

    @field_validator("redis", mode="before")
    @classmethod
    def _resolve_redis(cls, value: Any) -> Any:
        if value is True:
            return DEFAULT_REDIS
        if value is False:
            return None
        return value


class CompileRequest(BaseModel):
    """One compilation unit handed to the compile server."""
    filename: str
    source_map: bool = False

    def to_wire(self) -> bytes:
        return self.model_dump_json().encode("utf-8") + END_OF_REQUEST

    @classmethod
    def from_wire(cls, payload: bytes) -> "CompileRequest":
        """Parse a request as the service sees it, with or without the trailing control byte."""
        if payload.endswith(END_OF_REQUEST):
            payload = payload[: -len(END_OF_REQUEST)]
        return cls.model_validate_json(payload)


class RemoteError(BaseModel):
    """Error record reported by the compile server (a Ruby exception)."""
    model_config = ConfigDict(extra='ignore')

    name: str = "Error"
    message: str = ""
    backtrace: Union[str, List[str], None] = None

    def backtrace_text(self) -> str:
        if self.backtrace is None:
            return ""
        if isinstance(self.backtrace, list):
            return "\n".join(self.backtrace)
        return self.backtrace


class CompileResult(BaseModel):
    """
    Response from the compile server: either generated javascript or an error.

    A reply carrying both is a failure: the error is kept and the javascript dropped.

    `module_id` is optional; when the service sends it the hot reloader uses it
    instead of searching the generated code for the module registration.
    """
    model_config = ConfigDict(extra='ignore')

    javascript: Optional[str] = None
    module_id: Optional[str] = None
    error: Optional[RemoteError] = None

    @field_validator("module_id", mode="before")
    @classmethod
    def _stringify_module_id(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @model_validator(mode="before")
    @classmethod
    def _error_wins(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("error") is not None and "javascript" in data:
            data = {key: value for key, value in data.items() if key != "javascript"}
        return data

    @model_validator(mode='after')
    def validate_outcome(self) -> 'CompileResult':
        if self.error is not None and self.javascript is not None:
            raise ValueError("Compile result cannot carry both 'javascript' and 'error'")
        if self.error is None and self.javascript is None:
            raise ValueError("Compile result must carry either 'javascript' or 'error'")
        return self

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def from_wire(cls, payload: bytes) -> "CompileResult":
        """Parse the bytes the service wrote before closing the connection."""
        if not payload:
            raise BridgeProtocolError("Compile server closed the connection without a response.")
        try:
            data = json.loads(payload.decode("utf-8"))
            return cls.model_validate(data)
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            raise BridgeProtocolError(f"Invalid compile server response: {exc}") from exc
