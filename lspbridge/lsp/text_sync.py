"""
Document Synchronizer

Keeps one language server document in step with the editor: didOpen once,
then one didChange per local edit batch, full-text or incremental.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable, Union

from lsprotocol.types import (
    DidChangeTextDocumentParams,
    DidOpenTextDocumentParams,
    Range,
    TextDocumentContentChangePartial,
    TextDocumentContentChangeWholeDocument,
    TextDocumentItem,
    VersionedTextDocumentIdentifier,
)

from lspbridge.utils.positions import offset_to_pos
from lspbridge.utils.text import Text

if TYPE_CHECKING:
    from lspbridge.lsp.client import LanguageServerClient

logger = logging.getLogger(__name__)


ChangeEvent = Union[TextDocumentContentChangePartial, TextDocumentContentChangeWholeDocument]
ErrorHandler = Callable[[Exception], None]


@dataclass(frozen=True)
class TextChange:
    """One contiguous edit, with ``from_a``/``to_a`` in pre-edit coordinates."""

    from_a: int
    to_a: int
    inserted: str


class DocumentSynchronizer:
    """
    Per-document change sender.

    The version is 1 at didOpen and grows by exactly one per didChange
    notification, however many spans the notification carries. Changes made
    before ``open()`` only update the local text. Sends are
    serialized, so notifications leave in the order ``send_changes`` was
    called.

    Usage:
        sync = DocumentSynchronizer(client, uri, "python")
        await sync.open(Text.of(source))
        await sync.update(new_doc, [TextChange(4, 4, "x")])
    """

    def __init__(
        self,
        client: LanguageServerClient,
        uri: str,
        language_id: str,
        send_incremental_changes: bool = True,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self.client = client
        self.uri = uri
        self.language_id = language_id
        self.send_incremental_changes = send_incremental_changes
        self.on_error = on_error

        self.version = 0
        self.text = Text()
        self._lock = asyncio.Lock()

    async def open(self, text: Text) -> None:
        """Send didOpen with version 1 and the full text."""
        self.text = text
        self.version = 1
        params = DidOpenTextDocumentParams(
            text_document=TextDocumentItem(
                uri=self.uri,
                language_id=self.language_id,
                version=self.version,
                text=str(text),
            )
        )
        try:
            await self.client.text_document_did_open(params)
        except Exception as e:
            logger.error("Failed to open %s: %s", self.uri, e)
            self._report(e)

    @staticmethod
    def events_from_changes(doc: Text, changes: Iterable[TextChange]) -> list[ChangeEvent]:
        """
        Convert edit spans on ``doc`` into change events.

        A span covering the whole pre-edit document becomes a whole-document
        event. Events come out last span first, so every range is still valid
        when the server applies them in order.
        """
        events: list[ChangeEvent] = []
        for change in changes:
            if change.from_a == 0 and change.to_a == doc.length:
                events.append(TextDocumentContentChangeWholeDocument(text=change.inserted))
                continue
            events.append(
                TextDocumentContentChangePartial(
                    range=Range(
                        start=offset_to_pos(doc, change.from_a),
                        end=offset_to_pos(doc, change.to_a),
                    ),
                    text=change.inserted,
                )
            )
        events.reverse()
        return events

    async def update(self, new_text: Text, changes: Iterable[TextChange] | None = None) -> None:
        """Record ``new_text`` and send it, incrementally when possible."""
        old_text = self.text
        self.text = new_text

        if self.send_incremental_changes and changes is not None:
            events = self.events_from_changes(old_text, changes)
        else:
            events = [TextDocumentContentChangeWholeDocument(text=str(new_text))]

        await self.send_changes(events)

    async def send_changes(self, events: list[ChangeEvent]) -> None:
        if not self.client.ready:
            logger.debug("Server not ready, dropping change to %s", self.uri)
            return
        # version 0 means didOpen has not gone out yet
        if self.version == 0:
            logger.debug("%s not opened yet, dropping change", self.uri)
            return

        async with self._lock:
            self.version += 1
            params = DidChangeTextDocumentParams(
                text_document=VersionedTextDocumentIdentifier(
                    uri=self.uri, version=self.version
                ),
                content_changes=events,
            )
            try:
                await self.client.text_document_did_change(params)
            except Exception as e:
                logger.error(
                    "Failed to send change %d for %s: %s", self.version, self.uri, e
                )
                self._report(e)

    async def request_diagnostics(self) -> None:
        """Resend the full current text so the server re-runs diagnostics."""
        await self.send_changes(
            [TextDocumentContentChangeWholeDocument(text=str(self.text))]
        )

    def _report(self, error: Exception) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception:
            logger.exception("Error handler failed for %s", self.uri)
