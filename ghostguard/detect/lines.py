"""Line addressing for byte content.

Every match is reported as (line_start, line_end, byte_offset); this module
owns the mapping from byte offsets to 1-indexed line numbers.
"""

from __future__ import annotations

from bisect import bisect_right


def decode(data: bytes) -> str:
    """Decode file bytes so that ``encode_text(decode(b)) == b`` for any input."""
    return data.decode("utf-8", errors="surrogateescape")


def encode_text(text: str) -> bytes:
    return text.encode("utf-8", errors="surrogateescape")


class LineIndex:
    """Precomputed line-start offsets for one file's content."""

    def __init__(self, content: bytes):
        self.content = content
        starts = [0]
        position = content.find(b"\n")
        while position != -1:
            starts.append(position + 1)
            position = content.find(b"\n", position + 1)
        self._starts = starts

    @property
    def line_count(self) -> int:
        if self.content.endswith(b"\n"):
            return len(self._starts) - 1
        return len(self._starts)

    def line_of(self, offset: int) -> int:
        """1-indexed line containing ``offset``."""
        if offset < 0:
            raise ValueError(f"Negative byte offset: {offset}")
        return bisect_right(self._starts, offset)

    def span(self, byte_start: int, byte_end: int) -> tuple[int, int]:
        """Inclusive line span of the half-open byte range [start, end)."""
        line_start = self.line_of(byte_start)
        last = max(byte_start, byte_end - 1)
        return line_start, max(line_start, self.line_of(last))

    def line_bounds(self, line: int) -> tuple[int, int]:
        """Byte range of ``line`` without its trailing newline."""
        start = self._starts[line - 1]
        if line < len(self._starts):
            end = self._starts[line] - 1
        else:
            end = len(self.content)
        if end > start and self.content[end - 1 : end] == b"\r":
            end -= 1
        return start, end

    def line_text(self, line: int) -> str:
        start, end = self.line_bounds(line)
        return decode(self.content[start:end])

    def lines_text(self, line_start: int, line_end: int) -> str:
        return "\n".join(
            self.line_text(line) for line in range(line_start, line_end + 1)
        )

    def context(self, line_start: int, line_end: int, radius: int = 3) -> list[str]:
        """Lines surrounding a span, including the span itself."""
        first = max(1, line_start - radius)
        last = min(max(self.line_count, line_end), line_end + radius)
        return [self.line_text(line) for line in range(first, last + 1)]
