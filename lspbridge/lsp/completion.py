"""
Completion ranking and item helpers

Filters and orders server completion items for the token being typed, and
turns individual items into the edits and documentation the editor needs.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from lsprotocol.types import (
    CompletionItem,
    CompletionItemKind,
    CompletionList,
    InsertTextFormat,
)

from lspbridge.lsp.formatting import (
    MarkupRenderer,
    format_contents,
    is_empty_documentation,
    is_text_edit,
)
from lspbridge.lsp.text_sync import TextChange
from lspbridge.utils.positions import pos_to_offset, pos_to_offset_or_zero
from lspbridge.utils.text import Text

logger = logging.getLogger(__name__)

_WORD = re.compile(r"^\w+$")
_SNIPPET_PLACEHOLDER = re.compile(r"\$(\d+)")


def _sort_key(item: CompletionItem) -> str:
    return item.sort_text if item.sort_text is not None else item.label


def sort_completion_items(
    items: Sequence[CompletionItem],
    match_before: str | None,
    language: str,
) -> list[CompletionItem]:
    """
    Filter and order completion items for the token before the cursor.

    A token made only of word characters filters items by case-insensitive
    prefix; any other token (a bare trigger character) filters nothing. Items
    are ordered by sort text, falling back to the label, with items starting
    with the token first. Python keyword arguments (``name=``) lead.

    The items themselves are never modified.
    """
    result = list(items)

    if match_before:
        word = match_before.lower()
        if _WORD.match(word):
            result = [
                item
                for item in result
                if (item.filter_text if item.filter_text is not None else item.label)
                .lower()
                .startswith(word)
            ]

    if match_before:
        result.sort(key=lambda item: (not _sort_key(item).startswith(match_before), _sort_key(item)))
    else:
        result.sort(key=_sort_key)

    if language == "python":
        result.sort(key=lambda item: not item.label.endswith("="))

    return result


def completion_items_from_result(
    result: CompletionList | list[CompletionItem] | None,
) -> list[CompletionItem]:
    if result is None:
        return []
    if isinstance(result, CompletionList):
        return list(result.items)
    return list(result)


def longest_common_prefix(strings: Sequence[str]) -> str:
    if not strings:
        return ""
    shortest = min(strings, key=len)
    for i, char in enumerate(shortest):
        if any(s[i] != char for s in strings):
            return shortest[:i]
    return shortest


def prefix_match(items: Sequence[CompletionItem]) -> re.Pattern[str] | None:
    """
    Build a pattern matching any non-empty prefix of the items' common prefix.

    The pattern is anchored at the end of the text, so searching the text
    before the cursor yields the span the completion replaces. Returns None
    when the items share no prefix.
    """
    texts = []
    for item in items:
        if item.text_edit is not None and is_text_edit(item.text_edit):
            texts.append(item.text_edit.new_text)
        else:
            texts.append(item.label)

    prefix = longest_common_prefix(texts)
    if not prefix:
        return None

    alternatives = "|".join(re.escape(prefix[:end]) for end in range(len(prefix), 0, -1))
    return re.compile(f"(?:{alternatives})$")


def convert_snippet(snippet: str) -> str:
    """Rewrite an LSP snippet into the ``${n}`` placeholder form editors expect."""
    result = snippet.replace("\\\\", "")
    return _SNIPPET_PLACEHOLDER.sub(lambda m: "${" + m.group(1) + "}", result)


def completion_kind_name(kind: CompletionItemKind | int | None) -> str | None:
    """Lower-cased kind name (``"function"``, ``"variable"``...) for display."""
    if kind is None:
        return None
    try:
        return CompletionItemKind(kind).name.lower()
    except ValueError:
        return None


@dataclass(frozen=True)
class CompletionEdits:
    """What applying a completion item does to the document."""

    change: TextChange
    snippet: bool = False
    additional: list[TextChange] = field(default_factory=list)


def completion_edits(
    doc: Text,
    item: CompletionItem,
    from_: int,
    to: int,
    use_snippet: bool = False,
) -> CompletionEdits:
    """
    Compute the edits for accepting ``item`` over ``[from_, to)``.

    The item's text edit wins over its insert text. Snippet insert text is
    only used when ``use_snippet`` is set, otherwise the label is inserted.
    Additional edits are ordered last-in-document first so they can be
    applied one after another.
    """
    text_edit = item.text_edit
    if text_edit is not None and is_text_edit(text_edit):
        change = TextChange(
            pos_to_offset_or_zero(doc, text_edit.range.start),
            pos_to_offset_or_zero(doc, text_edit.range.end),
            text_edit.new_text,
        )
        snippet = False
    elif (
        item.insert_text
        and item.insert_text_format == InsertTextFormat.Snippet
        and use_snippet
    ):
        change = TextChange(from_, to, convert_snippet(item.insert_text))
        snippet = True
    else:
        change = TextChange(from_, to, item.label)
        snippet = False

    additional = []
    for edit in sorted(
        item.additional_text_edits or [],
        key=lambda e: pos_to_offset_or_zero(doc, e.range.end),
        reverse=True,
    ):
        start = pos_to_offset_or_zero(doc, edit.range.start)
        end = pos_to_offset(doc, edit.range.end)
        additional.append(TextChange(start, start if end is None else end, edit.new_text))

    return CompletionEdits(change=change, snippet=snippet, additional=additional)


async def resolve_documentation(
    item: CompletionItem,
    resolve: Callable[[CompletionItem], Awaitable[CompletionItem]] | None,
    render_markup: MarkupRenderer | None = None,
) -> str | None:
    """
    Documentation text for ``item``, resolving it lazily when possible.

    A failing resolve falls back to the documentation the item already
    carries. Empty documentation yields None.
    """
    documentation: Any = item.documentation

    if resolve is not None:
        try:
            resolved = await resolve(item)
            if resolved is not None and resolved.documentation:
                documentation = resolved.documentation
        except Exception as e:
            logger.error("Failed to resolve completion item %r: %s", item.label, e)

    if not documentation or is_empty_documentation(documentation):
        return None
    return format_contents(documentation, render_markup)
