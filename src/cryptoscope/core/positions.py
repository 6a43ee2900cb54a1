"""Map character (or byte) offsets to 1-based line numbers.

A line-start table is built once per text (offset 0 plus every offset right
after a newline) and each lookup is a binary search for the greatest line
start that is <= the offset. Works on both `str` and `bytes`; the tree-sitter
detector feeds byte offsets, the lexical detector character offsets.
"""

from __future__ import annotations

from bisect import bisect_right
from typing import Iterable, List, Optional, Tuple, Union

Text = Union[str, bytes]


def build_line_starts(text: Text) -> List[int]:
    """Return ascending offsets where each line of `text` begins."""
    if not text:
        return []
    nl = b"\n" if isinstance(text, (bytes, bytearray)) else "\n"
    starts = [0]
    i = text.find(nl)
    while i != -1:
        starts.append(i + 1)
        i = text.find(nl, i + 1)
    return starts


class LineIndex:
    """Precomputed line-start table for repeated lookups on one text."""

    def __init__(self, text: Text):
        self.length = len(text)
        self.starts = build_line_starts(text)

    def line_of(self, offset: int) -> int:
        if not self.starts:
            return 0
        # offsets past the end collapse onto the last line
        offset = max(0, min(offset, self.length))
        return bisect_right(self.starts, offset)

    def span(self, line: int) -> Optional[Tuple[int, int]]:
        """(start, end) offsets of 1-based `line`, end excluding its newline."""
        if not 1 <= line <= len(self.starts):
            return None
        start = self.starts[line - 1]
        end = self.starts[line] - 1 if line < len(self.starts) else self.length
        return start, end

    def lines_of(self, offsets: Iterable[int]) -> List[int]:
        if not self.starts:
            return []
        return sorted({self.line_of(o) for o in offsets})


def offsets_to_lines(text: Text, offsets: Iterable[int]) -> List[int]:
    """Distinct, ascending, 1-based line numbers for `offsets` within `text`.

    >>> offsets_to_lines("SHA256\\nAES\\n", [0, 7])
    [1, 2]
    """
    return LineIndex(text).lines_of(offsets)
