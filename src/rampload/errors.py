"""Error types with helpful suggestions.

Configuration problems are fatal and surface before a run starts.
Everything that goes wrong while the run is in flight is recorded in the
stats instead of raised; these types are what the CLI shows the user.
"""

from __future__ import annotations

import re

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

console = Console(stderr=True)


class RampLoadError(Exception):
    """Base exception with helpful suggestions."""

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion

    def show(self) -> None:
        """Display the error with suggestion."""
        console.print(_error_panel(self.message, self.suggestion))


class ConfigurationError(RampLoadError):
    """Invalid plan, URL or run option. Raised before any stage begins."""

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        issues: list[str] | None = None,
    ) -> None:
        super().__init__(message, suggestion)
        self.issues = list(issues) if issues else [message]


class SpawnError(RampLoadError):
    """A virtual user could not be started."""

    pass


class TransportError(RampLoadError):
    """A request never produced a response (refused, timed out, reset)."""

    pass


# Error patterns and suggestions
ERROR_SUGGESTIONS = {
    r"invalid url|malformed url|no scheme|missing scheme": {
        "message": "Invalid URL format",
        "suggestion": "Make sure the target URL includes the scheme and host.\nExample: http://localhost:80/pessoas",
    },
    r"connection refused|errno 111|connecterror|all connection attempts failed": {
        "message": "Connection refused",
        "suggestion": "The target rejected the connection. Check that:\n• The server is running\n• The port is correct\n• Firewall rules allow the connection",
    },
    r"name or service not known|getaddrinfo failed|nodename nor servname": {
        "message": "Could not resolve hostname",
        "suggestion": "The host name could not be resolved. Check the spelling of target_url and your DNS.",
    },
    r"timeout|timed out": {
        "message": "Request timed out",
        "suggestion": "The target took too long to respond. Try:\n• Raising request_timeout\n• Lowering the stage targets\n• Checking if the server is overloaded",
    },
    r"ssl|certificate|tls": {
        "message": "SSL/TLS error",
        "suggestion": "There's a certificate issue. Check the target's certificate chain and your system clock.",
    },
    r"too many open files|errno 24|cannot allocate memory": {
        "message": "Out of local resources",
        "suggestion": "The load generator ran out of sockets or memory.\nRaise the open-file limit (ulimit -n) or lower the stage targets.",
    },
}


def analyze_error(error: BaseException) -> tuple[str, str | None]:
    """Analyze an error and return an enhanced message with suggestion.

    Args:
        error: The exception to analyze

    Returns:
        Tuple of (message, suggestion)
    """
    if isinstance(error, ConfigurationError):
        return error.message, error.suggestion
    if isinstance(error, RampLoadError) and error.suggestion:
        return error.message, error.suggestion

    known = match_suggestion(type(error).__name__, str(error))
    if known is not None:
        return known
    return str(error) or type(error).__name__, None


def match_suggestion(kind: str, message: str) -> tuple[str, str] | None:
    """Look up ``kind: message`` in ERROR_SUGGESTIONS.

    Used for live exceptions and for the error samples kept in the stats.
    """
    text = f"{kind}: {message}".lower()
    for pattern, info in ERROR_SUGGESTIONS.items():
        if re.search(pattern, text):
            return info["message"], info["suggestion"]
    return None


def error_kind(error: BaseException) -> str:
    """Short label used to bucket an error in the stats."""
    if isinstance(error, TransportError) and error.__cause__ is not None:
        return type(error.__cause__).__name__
    return type(error).__name__


def _error_panel(
    message: str,
    suggestion: str | None = None,
    context: str | None = None,
    details: list[str] | None = None,
    original: str | None = None,
) -> Panel:
    text = Text("✗ ", style="bold red")
    if context:
        text.append(f"{context}\n", style="dim")
    text.append(message, style="bold red")
    for detail in details or ():
        text.append(f"\n  • {detail}", style="red")
    if suggestion:
        text.append(f"\n\n💡 {suggestion}", style="yellow")
    if original:
        text.append(f"\n\nOriginal: {original}", style="dim")
    return Panel(text, border_style="red", title="Error")


def show_error(error: BaseException, context: str | None = None) -> None:
    """Render ``error`` for the CLI.

    Known failure patterns are replaced by a friendlier message and a
    suggestion; every issue of a ConfigurationError is listed.
    """
    message, suggestion = analyze_error(error)
    details = error.issues if isinstance(error, ConfigurationError) and len(error.issues) > 1 else None

    original = str(error)
    if original.lower() == message.lower():
        original = ""

    console.print()
    console.print(_error_panel(message, suggestion, context, details, original))
    console.print()


def show_validation_warnings(issues: list[str]) -> None:
    """Show non-fatal observations about a valid config, if any."""
    if not issues:
        return
    body = "\n".join(f"  • {issue}" for issue in issues)
    console.print(Panel(Text(body, style="yellow"), border_style="yellow", title="⚠ Warnings"))
