"""
RPC Session Facade

The session talks to the language server through a narrow contract:
``request(method, params, timeout)`` and ``notify(method, params)``, plus
hooks for server-pushed notifications and server-initiated requests. The
transport, JSON-RPC framing and id correlation live behind it.

This module also owns the method-name to parameter-shape mapping the session
validates against, and ships ``PyglsRpcSession``, a facade backed by the
pygls ``LanguageClient`` for driving a real server process.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Protocol

from lsprotocol.types import (
    CLIENT_REGISTER_CAPABILITY,
    CLIENT_UNREGISTER_CAPABILITY,
    COMPLETION_ITEM_RESOLVE,
    EXIT,
    INITIALIZE,
    INITIALIZED,
    SHUTDOWN,
    TEXT_DOCUMENT_CODE_ACTION,
    TEXT_DOCUMENT_COMPLETION,
    TEXT_DOCUMENT_DEFINITION,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_HOVER,
    TEXT_DOCUMENT_PREPARE_RENAME,
    TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS,
    TEXT_DOCUMENT_RENAME,
    TEXT_DOCUMENT_SIGNATURE_HELP,
    WINDOW_LOG_MESSAGE,
    WINDOW_SHOW_MESSAGE,
    WINDOW_SHOW_MESSAGE_REQUEST,
    WINDOW_WORK_DONE_PROGRESS_CREATE,
    WORKSPACE_CONFIGURATION,
    CodeActionParams,
    CompletionItem,
    CompletionParams,
    DefinitionParams,
    DidChangeTextDocumentParams,
    DidOpenTextDocumentParams,
    HoverParams,
    InitializedParams,
    InitializeParams,
    LogMessageParams,
    MessageType,
    PrepareRenameParams,
    RenameParams,
    ShowMessageParams,
    SignatureHelpParams,
)
from pygls.lsp.client import LanguageClient

from lspbridge.lsp.errors import RequestTimeout

logger = logging.getLogger(__name__)


# Client to server, answered by the server.
#   initialize                  -> InitializeResult
#   textDocument/hover          -> Hover | None
#   textDocument/completion     -> list[CompletionItem] | CompletionList | None
#   completionItem/resolve      -> CompletionItem
#   textDocument/definition     -> Location | list[Location] | list[LocationLink] | None
#   textDocument/codeAction     -> list[Command | CodeAction] | None
#   textDocument/rename         -> WorkspaceEdit | None
#   textDocument/prepareRename  -> Range | PrepareRenameResult | None
#   textDocument/signatureHelp  -> SignatureHelp | None
REQUEST_PARAMS: dict[str, type] = {
    INITIALIZE: InitializeParams,
    TEXT_DOCUMENT_HOVER: HoverParams,
    TEXT_DOCUMENT_COMPLETION: CompletionParams,
    COMPLETION_ITEM_RESOLVE: CompletionItem,
    TEXT_DOCUMENT_DEFINITION: DefinitionParams,
    TEXT_DOCUMENT_CODE_ACTION: CodeActionParams,
    TEXT_DOCUMENT_RENAME: RenameParams,
    TEXT_DOCUMENT_PREPARE_RENAME: PrepareRenameParams,
    TEXT_DOCUMENT_SIGNATURE_HELP: SignatureHelpParams,
}

# Client to server, fire-and-forget.
NOTIFY_PARAMS: dict[str, type] = {
    INITIALIZED: InitializedParams,
    TEXT_DOCUMENT_DID_OPEN: DidOpenTextDocumentParams,
    TEXT_DOCUMENT_DID_CHANGE: DidChangeTextDocumentParams,
}

# Server to client requests the bridge answers so the server never stalls.
SERVER_REQUESTS = (
    WORKSPACE_CONFIGURATION,
    CLIENT_REGISTER_CAPABILITY,
    CLIENT_UNREGISTER_CAPABILITY,
    WINDOW_WORK_DONE_PROGRESS_CREATE,
    WINDOW_SHOW_MESSAGE_REQUEST,
)

# Server to client notifications relayed to the session.
SERVER_NOTIFICATIONS = (TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS,)


NotificationHandler = Callable[[str, Any], None]
RequestHandler = Callable[[str, Any], Any]


class RpcSession(Protocol):
    """Contract between the session and whatever carries the JSON-RPC traffic."""

    async def request(self, method: str, params: Any, timeout: float) -> Any:
        """Send a request; raise RequestTimeout if no answer within ``timeout`` seconds."""
        ...

    async def notify(self, method: str, params: Any) -> None:
        ...

    def close(self) -> None:
        ...

    def on_notification(self, handler: NotificationHandler) -> None:
        """Install the handler receiving every server-pushed notification."""
        ...

    def on_request(self, handler: RequestHandler) -> None:
        """Install the handler answering server-initiated requests."""
        ...


_LOG_LEVELS = {
    MessageType.Error: logging.ERROR,
    MessageType.Warning: logging.WARNING,
    MessageType.Info: logging.INFO,
    MessageType.Log: logging.DEBUG,
}


class PyglsRpcSession:
    """
    RpcSession backed by a pygls ``LanguageClient``.

    Usage:
        rpc = PyglsRpcSession()
        await rpc.start_io("pyright-langserver", "--stdio")
        client = LanguageServerClient(rpc, root_uri="file:///project")
        await client.initialize()
    """

    def __init__(
        self,
        client: LanguageClient | None = None,
        name: str = "lspbridge",
        version: str = "0.1.0",
    ) -> None:
        self._client = client or LanguageClient(name, version)
        self._notification_handler: NotificationHandler | None = None
        self._request_handler: RequestHandler | None = None
        self._closing: asyncio.Task | None = None
        self._register_features()

    @property
    def client(self) -> LanguageClient:
        return self._client

    def on_notification(self, handler: NotificationHandler) -> None:
        self._notification_handler = handler

    def on_request(self, handler: RequestHandler) -> None:
        self._request_handler = handler

    async def start_io(self, cmd: str, *args: str, **kwargs: Any) -> None:
        """Spawn the server process and talk to it over stdio."""
        logger.info("Starting language server: %s %s", cmd, " ".join(args))
        await self._client.start_io(cmd, *args, **kwargs)

    async def request(self, method: str, params: Any, timeout: float) -> Any:
        future = self._client.protocol.send_request_async(method, params)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as e:
            raise RequestTimeout(method, timeout) from e

    async def notify(self, method: str, params: Any) -> None:
        self._client.protocol.notify(method, params)

    async def stop(self) -> None:
        """Shut the server down politely, then stop the client."""
        try:
            await self.request(SHUTDOWN, None, timeout=5.0)
            self._client.protocol.notify(EXIT, None)
        except Exception as e:
            logger.debug("Error during server shutdown: %s", e)
        await self._client.stop()

    def close(self) -> None:
        """Schedule ``stop()`` on the running loop, once."""
        if self._closing is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, language client left to the caller")
            return
        self._closing = loop.create_task(self.stop())

    async def wait_closed(self) -> None:
        if self._closing is not None:
            await self._closing

    def _register_features(self) -> None:
        for method in SERVER_NOTIFICATIONS:
            self._client.feature(method)(self._make_notification_handler(method))

        for method in SERVER_REQUESTS:
            self._client.feature(method)(self._make_request_handler(method))

        @self._client.feature(WINDOW_LOG_MESSAGE)
        def on_log_message(params: LogMessageParams) -> None:
            logger.log(_LOG_LEVELS.get(params.type, logging.INFO), "server: %s", params.message)

        @self._client.feature(WINDOW_SHOW_MESSAGE)
        def on_show_message(params: ShowMessageParams) -> None:
            logger.log(_LOG_LEVELS.get(params.type, logging.INFO), "server: %s", params.message)

    def _make_notification_handler(self, method: str) -> Callable[[Any], None]:
        def handler(params: Any) -> None:
            if self._notification_handler is not None:
                self._notification_handler(method, params)

        handler.__name__ = f"on_{method.replace('/', '_')}"
        return handler

    def _make_request_handler(self, method: str) -> Callable[[Any], Any]:
        def handler(params: Any) -> Any:
            if self._request_handler is None:
                return None
            return self._request_handler(method, params)

        handler.__name__ = f"on_{method.replace('/', '_')}"
        return handler
