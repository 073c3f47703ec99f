"""
Language Server Plugin

The per-document consumer attached to a LanguageServerClient. It owns the
document synchronizer, turns editor events into guarded feature requests and
converts results into editor-facing values.

Every feature request returns None when its feature flag is off, the session
is not ready, or the server did not advertise the capability.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from lsprotocol.types import (
    TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS,
    CodeAction,
    CodeActionContext,
    CodeActionParams,
    Command,
    CompletionItem,
    CompletionParams,
    DefinitionParams,
    Diagnostic,
    DiagnosticSeverity,
    HoverParams,
    Location,
    Position,
    PrepareRenameParams,
    PublishDiagnosticsParams,
    Range,
    RenameParams,
    SignatureHelp,
    SignatureHelpContext,
    SignatureHelpParams,
    SignatureHelpTriggerKind,
    TextDocumentIdentifier,
    WorkspaceEdit,
)

from lspbridge.config import FeatureOptions
from lspbridge.lsp.client import LanguageServerClient
from lspbridge.lsp.completion import (
    CompletionEdits,
    completion_edits,
    completion_items_from_result,
    prefix_match,
    resolve_documentation,
    sort_completion_items,
)
from lspbridge.lsp.errors import LanguageServerError
from lspbridge.lsp.formatting import (
    MarkupRenderer,
    format_contents,
    format_signature_help,
    is_empty_documentation,
)
from lspbridge.lsp.notifications import Notification
from lspbridge.lsp.text_sync import DocumentSynchronizer, TextChange
from lspbridge.lsp.triggers import (
    DEFAULT_MAX_LINES_BACK,
    get_completion_trigger_kind,
    get_signature_help_trigger_position,
    is_cursor_inside_function_call,
)
from lspbridge.utils.positions import offset_to_pos, pos_to_offset, range_to_offsets
from lspbridge.utils.text import Text

logger = logging.getLogger(__name__)

_WORD_BEFORE = re.compile(r"\w+$")

_SEVERITIES = {
    DiagnosticSeverity.Error: "error",
    DiagnosticSeverity.Warning: "warning",
    DiagnosticSeverity.Information: "info",
    DiagnosticSeverity.Hint: "hint",
}


@dataclass(frozen=True)
class HoverInfo:
    from_: int
    to: int
    contents: str
    html: bool = False


@dataclass(frozen=True)
class DefinitionResult:
    """Target of a go-to-definition lookup."""

    uri: str
    range: Range
    is_external_document: bool


@dataclass(frozen=True)
class EditorDiagnostic:
    from_: int
    to: int
    severity: str
    message: str
    source: str | None = None


@dataclass(frozen=True)
class CompletionResult:
    """
    Ranked completion options.

    ``from_`` is where the replaced text starts; ``span`` matches the text
    the options can still complete, so the editor can keep filtering locally.
    """

    from_: int
    options: list
    span: re.Pattern[str] | None = None


@dataclass(frozen=True)
class TooltipSpec:
    pos: int
    end: int
    above: bool
    contents: str
    html: bool = False


@dataclass
class PluginOptions:
    features: FeatureOptions = field(default_factory=FeatureOptions)
    send_incremental_changes: bool = True
    allow_html_content: bool = False
    use_snippet_on_completion: bool = False
    completion_match_before: str | re.Pattern[str] | None = None
    max_lines_back: int = DEFAULT_MAX_LINES_BACK
    render_markup: MarkupRenderer | None = None
    apply_edit: Callable[[WorkspaceEdit], None] | None = None
    on_go_to_definition: Callable[[DefinitionResult], None] | None = None
    on_diagnostics: Callable[[list[EditorDiagnostic]], None] | None = None
    on_error: Callable[[Exception], None] | None = None


class LanguageServerPlugin:
    """
    Bridge between one editor document and a language server session.

    Usage:
        plugin = LanguageServerPlugin(client, "file:///app.py", "python", options)
        await plugin.initialize(Text.of(source))
        await plugin.update(new_doc, [TextChange(10, 10, ".")])
        result = await plugin.request_completion(new_doc, 11)
    """

    def __init__(
        self,
        client: LanguageServerClient,
        document_uri: str,
        language_id: str,
        options: PluginOptions | None = None,
    ) -> None:
        self.client = client
        self.document_uri = document_uri
        self.language_id = language_id
        self.options = options or PluginOptions()

        self.current_tooltip: TooltipSpec | None = None
        self.sync = DocumentSynchronizer(
            client,
            document_uri,
            language_id,
            send_incremental_changes=self.options.send_incremental_changes,
            on_error=self._report_error,
        )

        client.attach_plugin(self)

    @property
    def features(self) -> FeatureOptions:
        return self.options.features

    @property
    def doc(self) -> Text:
        return self.sync.text

    def _server_supports(self, capability: str) -> bool:
        capabilities = self.client.capabilities
        return bool(capabilities is not None and getattr(capabilities, capability, None))

    def _can_request(self, enabled: bool, capability: str) -> bool:
        return enabled and self.client.ready and self._server_supports(capability)

    def _identifier(self) -> TextDocumentIdentifier:
        return TextDocumentIdentifier(uri=self.document_uri)

    def _render(self, contents: Any) -> str:
        return format_contents(contents, self.options.render_markup)

    def _report_error(self, error: Exception) -> None:
        if self.options.on_error is not None:
            self.options.on_error(error)

    async def initialize(self, text: Text) -> None:
        """Wait for the session handshake, then open the document."""
        await self.client.initialize()
        await self.sync.open(text)

    async def update(
        self,
        new_doc: Text,
        changes: Sequence[TextChange] | None = None,
        cursor: int | None = None,
    ) -> None:
        """
        Forward an editor change to the server.

        Args:
            new_doc: The document after the change
            changes: Edit spans in pre-edit coordinates, if the editor has them
            cursor: Cursor offset after the change; defaults to the end of the
                    last inserted span
        """
        if new_doc == self.doc:
            return

        await self.sync.update(new_doc, changes)

        if (
            changes
            and self.features.signature_help_enabled
            and self.features.signature_activate_on_typing
        ):
            try:
                await self._update_signature_help(new_doc, changes, cursor)
            except Exception as e:
                logger.error("Signature help failed in %s: %s", self.document_uri, e)
                self.hide_signature_help_tooltip()
                self._report_error(e)

    async def _update_signature_help(
        self, doc: Text, changes: Sequence[TextChange], cursor: int | None
    ) -> None:
        provider = getattr(self.client.capabilities, "signature_help_provider", None)
        trigger_characters = getattr(provider, "trigger_characters", None)

        for change in changes:
            trigger = get_signature_help_trigger_position(
                change.inserted, change.from_a, trigger_characters
            )
            if trigger is not None and trigger.trigger_pos <= doc.length:
                await self.show_signature_help_tooltip(
                    trigger.trigger_pos, trigger.trigger_character
                )
                return

        if self.current_tooltip is None:
            return

        if cursor is None:
            last = changes[-1]
            cursor = last.from_a + len(last.inserted)
        cursor = min(cursor, doc.length)
        if not is_cursor_inside_function_call(doc, cursor, self.options.max_lines_back):
            self.hide_signature_help_tooltip()

    async def send_changes(self, events: list) -> None:
        await self.sync.send_changes(events)

    async def request_diagnostics(self) -> None:
        await self.sync.request_diagnostics()

    async def request_hover(self, pos: Position) -> HoverInfo | None:
        if not self._can_request(self.features.hover_enabled, "hover_provider"):
            return None

        result = await self.client.text_document_hover(
            HoverParams(text_document=self._identifier(), position=pos)
        )
        if result is None or is_empty_documentation(result.contents):
            return None

        offset = pos_to_offset(self.doc, pos)
        if offset is None:
            return None
        span = range_to_offsets(self.doc, result.range) if result.range else None
        from_, to = span if span is not None else (offset, offset)

        contents = self._render(result.contents)
        if not contents:
            return None
        return HoverInfo(
            from_=from_, to=to, contents=contents, html=self.options.allow_html_content
        )

    async def request_completion(
        self, doc: Text, pos: int, explicit: bool = False
    ) -> CompletionResult | None:
        """
        Ask for completions at offset ``pos``.

        The trigger is inferred from the text before the cursor. Options are
        filtered and ranked against the word being typed.
        """
        if not self._can_request(self.features.completion_enabled, "completion_provider"):
            return None

        line = doc.line_at(pos)
        before = line.text[: pos - line.start]
        provider = self.client.capabilities.completion_provider
        context = get_completion_trigger_kind(
            before,
            explicit,
            getattr(provider, "trigger_characters", None),
            self.options.completion_match_before,
        )
        if context is None:
            return None

        result = await self.client.text_document_completion(
            CompletionParams(
                text_document=self._identifier(),
                position=offset_to_pos(doc, pos),
                context=context,
            )
        )
        items = completion_items_from_result(result)
        if not items:
            return None

        word = _WORD_BEFORE.search(before)
        token = word.group(0) if word else None
        options = sort_completion_items(items, token, self.language_id)

        span = prefix_match(options)
        match = span.search(before) if span is not None else None
        if match is not None:
            from_ = pos - len(match.group(0))
        elif token is not None:
            from_ = pos - len(token)
        else:
            from_ = pos
        return CompletionResult(from_=from_, options=options, span=span)

    def apply_completion(
        self, item: CompletionItem, from_: int, to: int
    ) -> CompletionEdits:
        """Edits for accepting ``item`` over ``[from_, to)`` in the current document."""
        return completion_edits(
            self.doc, item, from_, to, self.options.use_snippet_on_completion
        )

    async def completion_documentation(self, item: CompletionItem) -> str | None:
        """Documentation for ``item``, resolved lazily when the server supports it."""
        provider = getattr(self.client.capabilities, "completion_provider", None)
        resolve = None
        if self.client.ready and getattr(provider, "resolve_provider", False):
            resolve = self.client.completion_item_resolve
        return await resolve_documentation(item, resolve, self.options.render_markup)

    async def request_definition(self, pos: Position) -> DefinitionResult | None:
        if not self._can_request(self.features.definition_enabled, "definition_provider"):
            return None

        result = await self.client.text_document_definition(
            DefinitionParams(text_document=self._identifier(), position=pos)
        )
        if not result:
            return None

        location = result[0] if isinstance(result, list) else result
        if isinstance(location, Location):
            uri, range_ = location.uri, location.range
        else:
            uri, range_ = location.target_uri, location.target_selection_range

        definition = DefinitionResult(
            uri=uri,
            range=range_,
            is_external_document=uri != self.document_uri,
        )
        if self.options.on_go_to_definition is not None:
            self.options.on_go_to_definition(definition)
        return definition

    def _supports_prepare_rename(self) -> bool:
        provider = getattr(self.client.capabilities, "rename_provider", None)
        return bool(getattr(provider, "prepare_provider", False))

    async def request_rename(self, pos: Position, new_name: str) -> WorkspaceEdit | None:
        """
        Rename the symbol at ``pos`` and hand the edit to ``apply_edit``.

        Failures are reported through ``on_error`` rather than raised.
        """
        if not self._can_request(self.features.rename_enabled, "rename_provider"):
            return None

        try:
            if self._supports_prepare_rename():
                prepared = await self.client.text_document_prepare_rename(
                    PrepareRenameParams(text_document=self._identifier(), position=pos)
                )
                if prepared is None:
                    raise LanguageServerError("No symbol to rename at this position")

            edit = await self.client.text_document_rename(
                RenameParams(
                    text_document=self._identifier(), position=pos, new_name=new_name
                )
            )
            if edit is None:
                return None
            if self.options.apply_edit is not None:
                self.options.apply_edit(edit)
            return edit
        except Exception as e:
            logger.error("Rename to %r failed in %s: %s", new_name, self.document_uri, e)
            self._report_error(e)
            return None

    async def request_code_actions(
        self, range_: Range, diagnostics: list[Diagnostic] | None = None
    ) -> list[Command | CodeAction] | None:
        if not self._can_request(self.features.code_actions_enabled, "code_action_provider"):
            return None

        result = await self.client.text_document_code_action(
            CodeActionParams(
                text_document=self._identifier(),
                range=range_,
                context=CodeActionContext(diagnostics=diagnostics or []),
            )
        )
        return list(result or [])

    def apply_code_action(self, action: Command | CodeAction) -> bool:
        """Apply the workspace edit carried by ``action``; False if there is none."""
        edit = getattr(action, "edit", None)
        if edit is None or self.options.apply_edit is None:
            return False
        self.options.apply_edit(edit)
        return True

    async def request_signature_help(
        self, pos: Position, trigger_character: str | None = None
    ) -> SignatureHelp | None:
        if not self._can_request(
            self.features.signature_help_enabled, "signature_help_provider"
        ):
            return None

        context = SignatureHelpContext(
            trigger_kind=(
                SignatureHelpTriggerKind.TriggerCharacter
                if trigger_character
                else SignatureHelpTriggerKind.Invoked
            ),
            trigger_character=trigger_character,
            is_retrigger=self.current_tooltip is not None,
        )
        result = await self.client.text_document_signature_help(
            SignatureHelpParams(
                text_document=self._identifier(), position=pos, context=context
            )
        )
        if result is None or not result.signatures:
            return None
        return result

    async def show_signature_help_tooltip(
        self, pos: int, trigger_character: str | None = None
    ) -> TooltipSpec | None:
        """Replace the current tooltip with signature help for offset ``pos``."""
        result = await self.request_signature_help(
            offset_to_pos(self.doc, pos), trigger_character
        )
        contents = format_signature_help(result, self.options.render_markup)
        if not contents:
            self.hide_signature_help_tooltip()
            return None

        self.current_tooltip = TooltipSpec(
            pos=pos,
            end=pos,
            above=False,
            contents=contents,
            html=self.options.allow_html_content,
        )
        return self.current_tooltip

    def hide_signature_help_tooltip(self) -> None:
        self.current_tooltip = None

    def process_notification(self, notification: Notification) -> None:
        try:
            if notification.method == TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS:
                self._process_diagnostics(notification.params)
        except Exception:
            logger.exception(
                "Failed to process %s for %s", notification.method, self.document_uri
            )

    def _process_diagnostics(self, params: PublishDiagnosticsParams) -> None:
        if params.uri != self.document_uri or not self.features.diagnostics_enabled:
            return

        diagnostics = []
        for diagnostic in params.diagnostics:
            span = range_to_offsets(self.doc, diagnostic.range)
            if span is None:
                logger.debug("Dropping diagnostic outside %s: %s", self.document_uri, diagnostic.message)
                continue
            diagnostics.append(
                EditorDiagnostic(
                    from_=span[0],
                    to=span[1],
                    severity=_SEVERITIES.get(diagnostic.severity, "error"),
                    message=diagnostic.message,
                    source=diagnostic.source,
                )
            )
        diagnostics.sort(key=lambda d: d.from_)

        if self.options.on_diagnostics is not None:
            self.options.on_diagnostics(diagnostics)

    def destroy(self) -> None:
        """Stop receiving notifications and detach from the session."""
        self.client.detach_plugin(self)
