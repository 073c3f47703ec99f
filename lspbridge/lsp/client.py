"""
Language Server Session

Single source of truth for backend readiness and capability gating. Owns the
initialize handshake, the registry of attached plugins and the fan-out of
server-pushed notifications.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from lsprotocol.types import (
    COMPLETION_ITEM_RESOLVE,
    INITIALIZE,
    INITIALIZED,
    TEXT_DOCUMENT_CODE_ACTION,
    TEXT_DOCUMENT_COMPLETION,
    TEXT_DOCUMENT_DEFINITION,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_HOVER,
    TEXT_DOCUMENT_PREPARE_RENAME,
    TEXT_DOCUMENT_RENAME,
    TEXT_DOCUMENT_SIGNATURE_HELP,
    WORKSPACE_CONFIGURATION,
    ClientCapabilities,
    ClientCodeActionKindOptions,
    ClientCodeActionLiteralOptions,
    ClientCodeActionResolveOptions,
    ClientCompletionItemOptions,
    ClientSignatureInformationOptions,
    CodeActionClientCapabilities,
    CodeActionParams,
    CompletionClientCapabilities,
    CompletionItem,
    CompletionParams,
    ConfigurationParams,
    DeclarationClientCapabilities,
    DefinitionClientCapabilities,
    DefinitionParams,
    DidChangeConfigurationClientCapabilities,
    DidChangeTextDocumentParams,
    DidOpenTextDocumentParams,
    HoverClientCapabilities,
    HoverParams,
    ImplementationClientCapabilities,
    InitializedParams,
    InitializeParams,
    MarkupKind,
    MonikerClientCapabilities,
    PrepareRenameParams,
    RenameClientCapabilities,
    RenameParams,
    ServerCapabilities,
    SignatureHelpClientCapabilities,
    SignatureHelpParams,
    TextDocumentClientCapabilities,
    TextDocumentSyncClientCapabilities,
    TypeDefinitionClientCapabilities,
    WorkspaceClientCapabilities,
    WorkspaceFolder,
)

from lspbridge.lsp.errors import SessionClosedError, UnknownMethodError
from lspbridge.lsp.notifications import (
    Disposer,
    Listener,
    Notification,
    NotificationDispatcher,
)
from lspbridge.lsp.rpc import NOTIFY_PARAMS, REQUEST_PARAMS, RpcSession

if TYPE_CHECKING:
    from lspbridge.lsp.plugin import LanguageServerPlugin

logger = logging.getLogger(__name__)

# Seconds
DEFAULT_TIMEOUT = 10.0

CapabilitiesOverride = (
    ClientCapabilities | Callable[[ClientCapabilities], ClientCapabilities]
)
WorkspaceConfigurationResolver = Callable[[ConfigurationParams], list[Any]]


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


def default_client_capabilities() -> ClientCapabilities:
    """Build the capability descriptor sent when the caller does not override it."""
    doc_formats = [MarkupKind.Markdown, MarkupKind.PlainText]

    return ClientCapabilities(
        text_document=TextDocumentClientCapabilities(
            hover=HoverClientCapabilities(
                dynamic_registration=True,
                content_format=doc_formats,
            ),
            moniker=MonikerClientCapabilities(),
            synchronization=TextDocumentSyncClientCapabilities(
                dynamic_registration=True,
                will_save=False,
                did_save=False,
                will_save_wait_until=False,
            ),
            code_action=CodeActionClientCapabilities(
                dynamic_registration=True,
                code_action_literal_support=ClientCodeActionLiteralOptions(
                    code_action_kind=ClientCodeActionKindOptions(
                        value_set=[
                            "",
                            "quickfix",
                            "refactor",
                            "refactor.extract",
                            "refactor.inline",
                            "refactor.rewrite",
                            "source",
                            "source.organizeImports",
                        ]
                    )
                ),
                resolve_support=ClientCodeActionResolveOptions(properties=["edit"]),
            ),
            completion=CompletionClientCapabilities(
                dynamic_registration=True,
                completion_item=ClientCompletionItemOptions(
                    snippet_support=True,
                    commit_characters_support=True,
                    documentation_format=doc_formats,
                    deprecated_support=False,
                    preselect_support=False,
                ),
                context_support=False,
            ),
            signature_help=SignatureHelpClientCapabilities(
                dynamic_registration=True,
                signature_information=ClientSignatureInformationOptions(
                    documentation_format=doc_formats,
                ),
            ),
            declaration=DeclarationClientCapabilities(
                dynamic_registration=True, link_support=True
            ),
            definition=DefinitionClientCapabilities(
                dynamic_registration=True, link_support=True
            ),
            type_definition=TypeDefinitionClientCapabilities(
                dynamic_registration=True, link_support=True
            ),
            implementation=ImplementationClientCapabilities(
                dynamic_registration=True, link_support=True
            ),
            rename=RenameClientCapabilities(
                dynamic_registration=True, prepare_support=True
            ),
        ),
        workspace=WorkspaceClientCapabilities(
            did_change_configuration=DidChangeConfigurationClientCapabilities(
                dynamic_registration=True
            ),
        ),
    )


class LanguageServerClient:
    """
    Session with one language server.

    Lifecycle: UNINITIALIZED -> INITIALIZING -> READY -> CLOSED, never
    re-entering INITIALIZING once READY. ``ready`` flips to True exactly once,
    after a successful initialize exchange, and back to False only on close.

    Usage:
        client = LanguageServerClient(rpc, root_uri="file:///project")
        await client.initialize()          # safe to await any number of times
        dispose = client.on_notification(print)
        hover = await client.text_document_hover(params)
    """

    def __init__(
        self,
        rpc: RpcSession,
        root_uri: str | None,
        workspace_folders: list[WorkspaceFolder] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        capabilities: CapabilitiesOverride | None = None,
        initialization_options: Any = None,
        get_workspace_configuration: WorkspaceConfigurationResolver | None = None,
        auto_close: bool = False,
    ) -> None:
        self.rpc = rpc
        self.root_uri = root_uri
        self.workspace_folders = workspace_folders
        self.timeout = timeout
        self.client_capabilities = capabilities
        self.initialization_options = initialization_options
        self.get_workspace_configuration = get_workspace_configuration
        self.auto_close = auto_close

        self.ready = False
        self.capabilities: ServerCapabilities | None = None
        self.state = SessionState.UNINITIALIZED
        self.initialize_task: asyncio.Task[None] | None = None

        self._dispatcher = NotificationDispatcher()
        self._plugins: dict[LanguageServerPlugin, Disposer] = {}

        rpc.on_notification(self._on_rpc_notification)
        rpc.on_request(self.handle_server_request)

    @property
    def plugins(self) -> list[LanguageServerPlugin]:
        return list(self._plugins)

    def get_initialization_options(self) -> InitializeParams:
        """Build the initialize request parameters."""
        default_capabilities = default_client_capabilities()
        if self.client_capabilities is None:
            capabilities = default_capabilities
        elif callable(self.client_capabilities):
            capabilities = self.client_capabilities(default_capabilities)
        else:
            capabilities = self.client_capabilities

        return InitializeParams(
            capabilities=capabilities,
            process_id=None,
            root_uri=self.root_uri,
            workspace_folders=self.workspace_folders,
            initialization_options=self.initialization_options,
        )

    async def initialize(self) -> None:
        """
        Perform the initialize handshake.

        The first call starts the exchange; later calls await the same task,
        so the request is sent at most once per session. A failed exchange
        is raised to everyone waiting on it and the next call starts over.
        ``initialized`` has gone out before ``ready`` turns True.
        """
        if self.state is SessionState.CLOSED:
            raise SessionClosedError("Cannot initialize a closed session")

        if self.initialize_task is None:
            self.initialize_task = asyncio.ensure_future(self._initialize())
        await asyncio.shield(self.initialize_task)

    async def _initialize(self) -> None:
        self.state = SessionState.INITIALIZING
        logger.info("Initializing language server session for %s", self.root_uri)
        try:
            result = await self.request(
                INITIALIZE, self.get_initialization_options(), self.timeout * 3
            )
        except Exception:
            if self.state is SessionState.INITIALIZING:
                self.state = SessionState.UNINITIALIZED
                # callers already waiting share this error, the next call retries
                self.initialize_task = None
            raise

        if self.state is SessionState.CLOSED:
            return

        self.capabilities = result.capabilities
        await self._send_initialized()
        self.ready = True
        self.state = SessionState.READY
        logger.info("Language server ready: %s", getattr(result, "server_info", None))

    async def _send_initialized(self) -> None:
        try:
            await self.notify(INITIALIZED, InitializedParams())
        except Exception as e:
            logger.error("Failed to send initialized notification: %s", e)

    def close(self) -> None:
        """Close the underlying RPC session. Safe to call more than once."""
        if self.state is SessionState.CLOSED:
            return
        logger.info("Closing language server session for %s", self.root_uri)
        self.ready = False
        self.state = SessionState.CLOSED
        self.rpc.close()

    async def request(self, method: str, params: Any, timeout: float) -> Any:
        """Send a request after checking it against the method/params mapping."""
        self._check_params(REQUEST_PARAMS, method, params)
        return await self.rpc.request(method, params, timeout)

    async def notify(self, method: str, params: Any) -> None:
        """Send a notification after checking it against the method/params mapping."""
        self._check_params(NOTIFY_PARAMS, method, params)
        await self.rpc.notify(method, params)

    @staticmethod
    def _check_params(mapping: dict[str, type], method: str, params: Any) -> None:
        expected = mapping.get(method)
        if expected is None:
            raise UnknownMethodError(method)
        if not isinstance(params, expected):
            raise TypeError(
                f"{method} expects {expected.__name__}, got {type(params).__name__}"
            )

    async def text_document_did_open(self, params: DidOpenTextDocumentParams) -> None:
        await self.notify(TEXT_DOCUMENT_DID_OPEN, params)

    async def text_document_did_change(self, params: DidChangeTextDocumentParams) -> None:
        await self.notify(TEXT_DOCUMENT_DID_CHANGE, params)

    async def text_document_hover(self, params: HoverParams):
        return await self.request(TEXT_DOCUMENT_HOVER, params, self.timeout)

    async def text_document_completion(self, params: CompletionParams):
        return await self.request(TEXT_DOCUMENT_COMPLETION, params, self.timeout)

    async def completion_item_resolve(self, item: CompletionItem) -> CompletionItem:
        return await self.request(COMPLETION_ITEM_RESOLVE, item, self.timeout)

    async def text_document_definition(self, params: DefinitionParams):
        return await self.request(TEXT_DOCUMENT_DEFINITION, params, self.timeout)

    async def text_document_code_action(self, params: CodeActionParams):
        return await self.request(TEXT_DOCUMENT_CODE_ACTION, params, self.timeout)

    async def text_document_rename(self, params: RenameParams):
        return await self.request(TEXT_DOCUMENT_RENAME, params, self.timeout)

    async def text_document_prepare_rename(self, params: PrepareRenameParams):
        return await self.request(TEXT_DOCUMENT_PREPARE_RENAME, params, self.timeout)

    async def text_document_signature_help(self, params: SignatureHelpParams):
        return await self.request(TEXT_DOCUMENT_SIGNATURE_HELP, params, self.timeout)

    def attach_plugin(self, plugin: LanguageServerPlugin) -> None:
        if plugin in self._plugins:
            return
        self._plugins[plugin] = self._dispatcher.subscribe(plugin.process_notification)

    def detach_plugin(self, plugin: LanguageServerPlugin) -> None:
        """Detach ``plugin``; unknown plugins are ignored."""
        dispose = self._plugins.pop(plugin, None)
        if dispose is None:
            return
        dispose()
        if self.auto_close and not self._plugins:
            self.close()

    def on_notification(self, listener: Listener) -> Disposer:
        """Subscribe to every server-pushed notification."""
        return self._dispatcher.subscribe(listener)

    def process_notification(self, notification: Notification) -> None:
        self._dispatcher.dispatch(notification)

    def _on_rpc_notification(self, method: str, params: Any) -> None:
        self.process_notification(Notification(method=method, params=params))

    def handle_server_request(self, method: str, params: Any) -> Any:
        """
        Answer a request initiated by the server.

        workspace/configuration goes to the caller-supplied resolver when there
        is one, otherwise every requested item gets None. Anything else is
        answered with None.
        """
        if method == WORKSPACE_CONFIGURATION:
            if self.get_workspace_configuration is not None:
                return self.get_workspace_configuration(params)
            items = getattr(params, "items", None) or []
            return [None] * len(items)

        logger.debug("Answering server request %s with null", method)
        return None
