"""Domain-specific exceptions for relay operations.

These exceptions are safe to import from API layers without pulling in model clients.
"""

from __future__ import annotations


class RelayError(Exception):
    default_detail: str = "Relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class ProtocolError(RelayError):
    default_detail = "Malformed or unrecognized frame."


class SetupError(RelayError):
    default_detail = "Session setup failed."


class BackendError(RelayError):
    default_detail = "Model backend request failed."


class ToolExecutionError(RelayError):
    default_detail = "Tool execution failed."


class ConfigurationError(RelayError):
    default_detail = "Required configuration is missing."
