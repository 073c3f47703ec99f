"""Language server session, document sync and feature helpers."""
from lspbridge.lsp.client import LanguageServerClient, SessionState
from lspbridge.lsp.errors import (
    LanguageServerError,
    RequestTimeout,
    SessionClosedError,
    UnknownMethodError,
)
from lspbridge.lsp.notifications import Notification, NotificationDispatcher
from lspbridge.lsp.rpc import PyglsRpcSession, RpcSession
from lspbridge.lsp.text_sync import DocumentSynchronizer, TextChange
