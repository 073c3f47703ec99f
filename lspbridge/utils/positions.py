"""
Conversion between flat character offsets and LSP (line, character) positions.
"""

from __future__ import annotations

from lsprotocol.types import Position, Range

from lspbridge.utils.text import Text


def pos_to_offset(doc: Text, pos: Position) -> int | None:
    """
    Convert an LSP position to an offset into ``doc``.

    A position on the line just past the end of the document with character 0
    maps to the end of the document. Any character index beyond its line's
    length is invalid and returns None rather than being clamped.
    """
    if pos.line < 0 or pos.character < 0:
        return None

    if pos.line >= doc.line_count:
        if pos.character == 0:
            return doc.length
        return None

    line = doc.line(pos.line)
    if pos.character > len(line.text):
        return None
    return line.start + pos.character


def pos_to_offset_or_zero(doc: Text, pos: Position) -> int:
    offset = pos_to_offset(doc, pos)
    return 0 if offset is None else offset


def offset_to_pos(doc: Text, offset: int) -> Position:
    """
    Convert an offset into ``doc`` to an LSP position.

    Raises:
        ValueError: If the offset lies outside the document.
    """
    line = doc.line_at(offset)
    return Position(line=line.number, character=offset - line.start)


def range_to_offsets(doc: Text, range_: Range) -> tuple[int, int] | None:
    """Convert an LSP range to a ``(start, end)`` offset pair, or None if invalid."""
    start = pos_to_offset(doc, range_.start)
    end = pos_to_offset(doc, range_.end)
    if start is None or end is None:
        return None
    return start, end
