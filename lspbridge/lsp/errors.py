"""Exceptions raised by the language server bridge."""


class LanguageServerError(Exception):
    """Base class for bridge errors."""


class RequestTimeout(LanguageServerError):
    """The language server did not answer a request in time."""

    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(f"Request {method!r} timed out after {timeout:g}s")
        self.method = method
        self.timeout = timeout


class UnknownMethodError(LanguageServerError):
    """A request or notification was sent for a method the bridge does not map."""

    def __init__(self, method: str) -> None:
        super().__init__(f"Unknown LSP method: {method}")
        self.method = method


class SessionClosedError(LanguageServerError):
    """The session was used after it was closed."""
