"""Bounded, line-wrapped scrollback of the simulated terminal.

Backed by collections.deque with maxlen so the oldest lines are evicted
automatically once the capacity is reached.
"""

from __future__ import annotations

from collections import deque


class FrameBuffer:
    """Scrollback holding at most ``max_lines`` lines of ``width`` characters.

    Example:
        buffer = FrameBuffer(width=10, max_lines=3)
        buffer.append("hello world")
        buffer.snapshot()  # ("hello worl", "d")
    """

    def __init__(self, width: int = 70, max_lines: int = 100) -> None:
        if width <= 0 or max_lines <= 0:
            raise ValueError("width and max_lines must be positive")
        self._width = width
        self._lines: deque[str] = deque(maxlen=max_lines)

    @property
    def width(self) -> int:
        return self._width

    @property
    def max_lines(self) -> int:
        return self._lines.maxlen or 0

    def resize(self, width: int, max_lines: int) -> None:
        """Apply new dimensions.

        A narrower width re-wraps stored lines that no longer fit, so no
        line ever exceeds the current width. A wider width leaves stored
        lines as they are. A smaller capacity evicts the oldest lines
        immediately.
        """
        if width <= 0 or max_lines <= 0:
            raise ValueError("width and max_lines must be positive")
        narrower = width < self._width
        self._width = width
        if narrower:
            lines = [chunk for line in self._lines for chunk in self._wrap(line)]
            self._lines = deque(lines, maxlen=max_lines)
        elif max_lines != self._lines.maxlen:
            self._lines = deque(self._lines, maxlen=max_lines)

    def append(self, text: str) -> None:
        """Append text, splitting on line breaks and wrapping long lines.

        An empty logical line (e.g. between two newlines) is stored as a
        blank line. Appending an empty string does nothing.
        """
        if not text:
            return
        for line in text.split("\n"):
            self._lines.extend(self._wrap(line))

    def _wrap(self, line: str) -> list[str]:
        if not line:
            return [""]
        return [line[start:start + self._width] for start in range(0, len(line), self._width)]

    def start_line(self) -> None:
        """Open a fresh empty line for typing to continue on."""
        self._lines.append("")

    def type_char(self, char: str) -> None:
        """Add one typed character to the end of the transcript.

        The character goes onto the last line unless that line is full,
        in which case a new line is started. A newline starts a new line.
        """
        if char == "\n":
            self._lines.append("")
        elif not self._lines or len(self._lines[-1]) >= self._width:
            self._lines.append(char)
        else:
            self._lines[-1] += char

    def snapshot(self) -> tuple[str, ...]:
        """Return a point-in-time copy of the stored lines, oldest first."""
        return tuple(self._lines)

    def clear(self) -> None:
        self._lines.clear()

    def __len__(self) -> int:
        return len(self._lines)
