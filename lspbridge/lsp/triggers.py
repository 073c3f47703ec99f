"""
Trigger detection

Stateless helpers deciding when completion and signature help should fire.
They run on every keystroke, so they work on the current line or a small
window of lines rather than the whole document.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from lsprotocol.types import CompletionContext, CompletionTriggerKind

from lspbridge.utils.text import Text

# A word, or a word followed by a member-access or path separator.
DEFAULT_COMPLETION_PATTERN = re.compile(r"(\w+\.|\w+/|\w+)$")

DEFAULT_MAX_LINES_BACK = 20


@dataclass(frozen=True)
class SignatureHelpTrigger:
    trigger_pos: int
    trigger_character: str


def compile_match_before(pattern: str | re.Pattern[str] | None) -> re.Pattern[str]:
    """Anchor a caller-supplied completion pattern at the cursor."""
    if pattern is None:
        return DEFAULT_COMPLETION_PATTERN
    if isinstance(pattern, re.Pattern):
        pattern = pattern.pattern
    return re.compile(f"(?:{pattern})$")


def get_completion_trigger_kind(
    line_before_cursor: str,
    explicit: bool,
    trigger_characters: Sequence[str] | None,
    match_before: str | re.Pattern[str] | None = None,
) -> CompletionContext | None:
    """
    Infer how a completion request was triggered.

    Args:
        line_before_cursor: Text of the cursor's line up to the cursor
        explicit: True when the user asked for completion explicitly
        trigger_characters: The server's completion trigger characters
        match_before: Optional pattern overriding the default word pattern

    Returns:
        The completion context to send, or None when completion should not fire.
    """
    if explicit:
        return CompletionContext(trigger_kind=CompletionTriggerKind.Invoked)

    if not line_before_cursor:
        return None

    last_char = line_before_cursor[-1]
    if trigger_characters and last_char in trigger_characters:
        return CompletionContext(
            trigger_kind=CompletionTriggerKind.TriggerCharacter,
            trigger_character=last_char,
        )

    if compile_match_before(match_before).search(line_before_cursor):
        return CompletionContext(trigger_kind=CompletionTriggerKind.Invoked)

    return None


def get_signature_help_trigger_position(
    inserted: str,
    from_offset: int,
    trigger_characters: Sequence[str] | None,
) -> SignatureHelpTrigger | None:
    """
    Find where signature help should open after ``inserted`` was typed at ``from_offset``.

    Trigger characters are tried in list order and the first one present in
    the fragment wins. The position is just past its first occurrence, so an
    auto-closed ``()`` triggers right after ``(``.
    """
    if not inserted or not trigger_characters:
        return None

    for char in trigger_characters:
        index = inserted.find(char)
        if index != -1:
            return SignatureHelpTrigger(
                trigger_pos=from_offset + index + 1, trigger_character=char
            )
    return None


def get_parentheses_balance(text: str) -> int:
    # Other brackets and string literals are not special-cased.
    return text.count("(") - text.count(")")


def is_cursor_inside_function_call(
    doc: Text, pos: int, max_lines_back: int = DEFAULT_MAX_LINES_BACK
) -> bool:
    """True if more ``(`` than ``)`` appear between the window start and ``pos``."""
    line = doc.line_at(pos)
    start_line = max(0, line.number - max_lines_back)
    start = doc.line(start_line).start
    return get_parentheses_balance(doc.slice(start, pos)) > 0
