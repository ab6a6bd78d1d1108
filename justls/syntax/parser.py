"""
justls.syntax.parser - Line-oriented parser for justfiles

This module turns the text of a justfile into definition nodes with byte
spans into the source. It recognizes two top-level constructs:

    name := value          a variable
    name: dep1 dep2        a recipe header, followed by indented commands

The parser is tolerant: a line it cannot make sense of is recorded as a
ParseError and parsing continues with the next line.

All offsets are byte offsets into the UTF-8 encoding of the source text.
Lines and columns are 0-based.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

# Messages recorded for the recoverable error cases
MALFORMED_VARIABLE = "malformed variable"
MALFORMED_RECIPE = "malformed recipe"
COMMAND_OUTSIDE_RECIPE = "command not inside recipe"
UNRECOGNIZED_LINE = "unrecognized line"

_WHITESPACE = b" \t\r\v\f"


@dataclass(frozen=True)
class Span:
    """An inclusive byte range into a source buffer."""

    start: int
    end: int

    def text(self, data: bytes) -> str:
        """Return the text covered by this span, or "" if it does not fit."""
        if 0 <= self.start <= self.end < len(data):
            return data[self.start : self.end + 1].decode("utf-8", "replace")
        return ""


@dataclass
class Variable:
    """A `name := value` definition."""

    name: Span
    line: int
    col: int
    value: Optional[Span] = None


@dataclass
class Recipe:
    """A recipe header plus the indented command lines that follow it."""

    name: Span
    line: int
    col: int
    dependencies: list[Span] = field(default_factory=list)
    body: list[Span] = field(default_factory=list)


Definition = Union[Variable, Recipe]


@dataclass(frozen=True)
class ParseError:
    """A recoverable problem found on one line."""

    line: int
    col: int
    message: str


@dataclass
class ParseResult:
    """Everything the parser learned about one buffer."""

    text: str
    data: bytes
    nodes: list[Definition] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)
    line_starts: list[int] = field(default_factory=list)

    def line_bounds(self, line: int) -> Optional[tuple[int, int]]:
        """
        Return the byte range [start, stop) of a line, excluding its newline.

        Returns None if the line does not exist.
        """
        if line < 0 or line >= len(self.line_starts):
            return None
        start = self.line_starts[line]
        if line + 1 < len(self.line_starts):
            stop = self.line_starts[line + 1] - 1
        else:
            stop = len(self.data)
        return start, stop

    def line_bytes(self, line: int) -> Optional[bytes]:
        """Return the raw bytes of a line, or None if it does not exist."""
        bounds = self.line_bounds(line)
        if bounds is None:
            return None
        start, stop = bounds
        return self.data[start:stop]


def compute_line_starts(data: bytes) -> list[int]:
    """Byte offset of every line start; a trailing newline opens a final empty line."""
    starts = [0]
    pos = data.find(b"\n")
    while pos != -1:
        starts.append(pos + 1)
        pos = data.find(b"\n", pos + 1)
    return starts


def header_separator(line: bytes) -> int:
    """
    Return the index of the line's recipe header separator, or -1.

    The header separator is the first `:` on the line, unless that colon
    starts a `:=` variable separator.
    """
    colon = line.find(b":")
    if colon < 0 or line.startswith(b":=", colon):
        return -1
    return colon


def _name_span(line: bytes, line_start: int, sep: int) -> Optional[tuple[Span, int]]:
    """Locate the trimmed name left of `sep`; returns (span, column) or None."""
    head = line[:sep]
    stripped = head.strip(_WHITESPACE)
    if not stripped:
        return None
    col = len(head) - len(head.lstrip(_WHITESPACE))
    return Span(line_start + col, line_start + col + len(stripped) - 1), col


def _tokens(line: bytes, offset: int, line_start: int) -> list[Span]:
    """Whitespace-delimited tokens of line[offset:] as absolute spans."""
    spans = []
    i = offset
    n = len(line)
    while i < n:
        while i < n and line[i] in _WHITESPACE:
            i += 1
        start = i
        while i < n and line[i] not in _WHITESPACE:
            i += 1
        if i > start:
            spans.append(Span(line_start + start, line_start + i - 1))
    return spans


def parse_justfile(text: str) -> ParseResult:
    """
    Parse a justfile into definition nodes and recoverable errors.

    Each non-blank, non-comment line falls into exactly one case:

    1. a variable, when the first colon on the line begins `:=`
    2. a recipe header, when the line has any other colon
    3. a recipe command, when the line starts with whitespace
    4. an unrecognized line

    Args:
        text: The full buffer contents.

    Returns:
        A ParseResult owning the text, nodes in declaration order, errors in
        line order and the line start table.
    """
    data = text.encode("utf-8", "surrogatepass")
    result = ParseResult(text=text, data=data, line_starts=compute_line_starts(data))

    current: Optional[Recipe] = None
    for li in range(len(result.line_starts)):
        start, stop = result.line_bounds(li)  # type: ignore[misc]
        if start >= stop:
            continue
        line = data[start:stop]
        trimmed = line.strip(_WHITESPACE)
        if not trimmed or trimmed.startswith(b"#"):
            continue

        colon = line.find(b":")

        # name := value
        if colon >= 0 and line.startswith(b":=", colon):
            current = None
            found = _name_span(line, start, colon)
            if found is None:
                result.errors.append(ParseError(li, 0, MALFORMED_VARIABLE))
                continue
            name, col = found
            value = Span(start + colon + 2, stop - 1) if colon + 2 < len(line) else None
            result.nodes.append(Variable(name=name, line=li, col=col, value=value))
            continue

        # name: deps...
        if colon >= 0:
            found = _name_span(line, start, colon)
            if found is None:
                result.errors.append(ParseError(li, 0, MALFORMED_RECIPE))
                current = None
                continue
            name, col = found
            current = Recipe(
                name=name,
                line=li,
                col=col,
                dependencies=_tokens(line, colon + 1, start),
            )
            result.nodes.append(current)
            continue

        # Indented command
        if line[0] in _WHITESPACE:
            if current is not None:
                current.body.append(Span(start, stop - 1))
            else:
                result.errors.append(ParseError(li, 0, COMMAND_OUTSIDE_RECIPE))
            continue

        result.errors.append(ParseError(li, 0, UNRECOGNIZED_LINE))
        current = None

    return result
