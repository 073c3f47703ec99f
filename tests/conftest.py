from __future__ import annotations

from typing import Any

import pytest
from lsprotocol.types import (
    INITIALIZE,
    CompletionOptions,
    InitializeResult,
    RenameOptions,
    ServerCapabilities,
    SignatureHelpOptions,
    TextDocumentSyncKind,
)

from lspbridge.lsp.client import LanguageServerClient


def full_capabilities() -> ServerCapabilities:
    return ServerCapabilities(
        text_document_sync=TextDocumentSyncKind.Incremental,
        hover_provider=True,
        completion_provider=CompletionOptions(
            trigger_characters=[".", "/"], resolve_provider=True
        ),
        definition_provider=True,
        rename_provider=RenameOptions(prepare_provider=True),
        code_action_provider=True,
        signature_help_provider=SignatureHelpOptions(trigger_characters=["(", ","]),
    )


class FakeRpcSession:
    """In-memory RpcSession recording everything the session sends."""

    def __init__(self, capabilities: ServerCapabilities | None = None) -> None:
        self.capabilities = capabilities or full_capabilities()
        self.requests: list[tuple[str, Any, float]] = []
        self.notifications: list[tuple[str, Any]] = []
        self.responses: dict[str, Any] = {}
        self.notify_error: Exception | None = None
        self.closed = False
        self.notification_handler = None
        self.request_handler = None

    async def request(self, method: str, params: Any, timeout: float) -> Any:
        self.requests.append((method, params, timeout))
        if method == INITIALIZE and method not in self.responses:
            return InitializeResult(capabilities=self.capabilities)
        response = self.responses.get(method)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(params)
        return response

    async def notify(self, method: str, params: Any) -> None:
        self.notifications.append((method, params))
        if self.notify_error is not None:
            raise self.notify_error

    def close(self) -> None:
        self.closed = True

    def on_notification(self, handler) -> None:
        self.notification_handler = handler

    def on_request(self, handler) -> None:
        self.request_handler = handler

    def sent(self, method: str) -> list[Any]:
        """Params of every request or notification sent for ``method``."""
        return [params for m, params, _ in self.requests if m == method] + [
            params for m, params in self.notifications if m == method
        ]


@pytest.fixture
def rpc():
    return FakeRpcSession()


@pytest.fixture
def client(rpc):
    return LanguageServerClient(rpc, root_uri="file:///project")
