"""
Line-indexed text buffer.

A small immutable stand-in for the host editor's document model. Lines are
stored without their terminators; offsets count one character per newline.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Line:
    """A single line of a Text, with its 0-based number and start offset."""

    number: int
    start: int
    text: str

    @property
    def end(self) -> int:
        return self.start + len(self.text)


@dataclass(frozen=True)
class Text:
    """Immutable document contents."""

    lines: tuple[str, ...] = ("",)
    _starts: tuple[int, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "lines", tuple(self.lines) or ("",))
        starts = []
        offset = 0
        for line in self.lines:
            starts.append(offset)
            offset += len(line) + 1
        object.__setattr__(self, "_starts", tuple(starts))

    @classmethod
    def of(cls, content: str) -> Text:
        """Build a Text from a string; ``\\r\\n`` is normalized to ``\\n``."""
        return cls(tuple(content.replace("\r\n", "\n").split("\n")))

    @property
    def line_count(self) -> int:
        return len(self.lines)

    @property
    def length(self) -> int:
        return self._starts[-1] + len(self.lines[-1])

    def line(self, number: int) -> Line:
        """Return the 0-based line ``number``."""
        if number < 0 or number >= len(self.lines):
            raise IndexError(f"Line {number} out of range (0-{len(self.lines) - 1})")
        return Line(number, self._starts[number], self.lines[number])

    def line_at(self, offset: int) -> Line:
        """Return the line containing ``offset``."""
        if offset < 0 or offset > self.length:
            raise ValueError(f"Offset {offset} out of range (0-{self.length})")
        number = bisect_right(self._starts, offset) - 1
        return Line(number, self._starts[number], self.lines[number])

    def slice(self, start: int, end: int | None = None) -> str:
        """Return the text between two offsets."""
        if end is None:
            end = self.length
        first = self.line_at(start)
        last = self.line_at(end)
        if first.number == last.number:
            return first.text[start - first.start : end - first.start]
        parts = [first.text[start - first.start :]]
        parts.extend(self.lines[first.number + 1 : last.number])
        parts.append(last.text[: end - last.start])
        return "\n".join(parts)

    def replace(self, start: int, end: int, inserted: str) -> Text:
        """Return a new Text with ``[start, end)`` replaced by ``inserted``."""
        content = str(self)
        return Text.of(content[:start] + inserted + content[end:])

    def __str__(self) -> str:
        return "\n".join(self.lines)

    def __len__(self) -> int:
        return self.length
