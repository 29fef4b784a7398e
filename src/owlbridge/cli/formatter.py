import json
import typer
from typing import Any, List
from pydantic import BaseModel
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from owlbridge.core.models import BridgeOptions
from owlbridge.utils.diagnostics import BridgeDiagnostic

# Create a stderr console for logging
error_console = Console(stderr=True)

class OutputFormatter:
    """
    Handles output formatting for the bridge and its CLI.
    Ensures separation of concerns between System Logs (stderr) and Data (stdout).
    """

    @staticmethod
    def log(message: str, severity: str = "info") -> None:
        """
        Print system messages to stderr with color coding.
        """
        style = "white"
        prefix = "[SYSTEM]"

        if severity == "warning":
            style = "yellow"
        elif severity == "error":
            style = "red"
        elif severity == "critical":
            style = "bold red"
        elif severity == "success":
            style = "green"

        error_console.print(f"[{style}]{escape(prefix)} {escape(message)}[/{style}]")

    @staticmethod
    def print_diagnostics(diagnostics: List[BridgeDiagnostic]) -> None:
        """
        Prints a table of compile errors reported by the compile server.
        """
        if not diagnostics:
            return

        table = Table(title="Compile Server Errors", border_style="red", header_style="bold red")
        table.add_column("Severity", style="bold")
        table.add_column("Error")
        table.add_column("Message")
        table.add_column("File")

        for diag in diagnostics:
            color = "red"
            if diag.severity == "warning":
                color = "yellow"
            elif diag.severity == "critical":
                color = "bold red"

            table.add_row(
                f"[{color}]{diag.severity.upper()}[/{color}]",
                escape(diag.error_code),
                escape(diag.message),
                escape(diag.file_path),
            )

        error_console.print(table)
        for diag in diagnostics:
            if diag.backtrace:
                error_console.print(escape(diag.backtrace), style="dim")
        error_console.print() # spacing

    @staticmethod
    def print_options(options: BridgeOptions) -> None:
        """Print resolved bridge options as a two column table on stdout."""
        table = Table(title="Ruby Compile Bridge Options", header_style="bold")
        table.add_column("Option")
        table.add_column("Value")

        for key, value in options.model_dump(by_alias=True).items():
            table.add_row(key, escape(json.dumps(value)))

        Console().print(table)

    @staticmethod
    def print_data(data: Any) -> None:
        """
        Print a result to stdout.
        Handles Pydantic models and complex types.
        """
        # 1. Raw Strings (generated code)
        if isinstance(data, str):
            typer.echo(data)
            return

        # 2. Serialize complex objects
        def json_serializer(obj):
            if isinstance(obj, BaseModel):
                return obj.model_dump(mode='json', by_alias=True)
            if hasattr(obj, "isoformat"):
                return obj.isoformat()
            return str(obj)

        # 3. Print JSON
        try:
            output = json.dumps(data, indent=2, default=json_serializer)
            typer.echo(output)
        except TypeError as e:
            OutputFormatter.log(f"JSON Serialization failed: {e}", severity="error")
            typer.echo(str(data))
