"""Text buffer and position helpers."""
from .positions import offset_to_pos, pos_to_offset, pos_to_offset_or_zero, range_to_offsets
from .text import Line, Text

__all__ = [
    'Line',
    'Text',
    'offset_to_pos',
    'pos_to_offset',
    'pos_to_offset_or_zero',
    'range_to_offsets',
]
