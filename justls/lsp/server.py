"""
justls.lsp.server - Justfile Language Server Implementation

This module provides the main LSP server for justfiles. Every open document
is parsed and indexed as a whole on open and on each change, and the index
answers navigation requests.

Features:
- Go to definition for recipes and variables
- Hover with the kind of the symbol under the cursor
- Full document synchronization

Positions arrive from the client in UTF-16 code units while the parser works
in UTF-8 byte offsets; the helpers below convert between the two.

Usage:
    The server is started via `justls lsp` and communicates over stdio.
"""

import string
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Optional

from justls import SERVER_NAME, __version__
from justls.lsp.protocol import (
    HandlerResult,
    JsonRpcProtocol,
    Ok,
    ProtocolReader,
    ProtocolWriter,
    TextDocumentSyncKind,
    make_hover,
    make_location,
    make_range,
)
from justls.syntax.index import SymbolIndex, build_index
from justls.syntax.parser import (
    Definition,
    ParseResult,
    header_separator,
    parse_justfile,
)

_SYMBOL_BYTES = frozenset((string.ascii_letters + string.digits + "_-").encode("ascii"))


# =============================================================================
# Position Mapping
# =============================================================================


def _utf8_width(code_point: int) -> int:
    if code_point < 0x80:
        return 1
    if code_point < 0x800:
        return 2
    if code_point < 0x10000:
        return 3
    return 4


def utf16_to_byte(line: str, col16: int) -> int:
    """
    Convert a UTF-16 column on `line` to a UTF-8 byte offset.

    Code points above U+FFFF count as two UTF-16 units. Columns past the end
    of the line clamp to its byte length; negative columns clamp to 0.
    """
    units = 0
    offset = 0
    for ch in line:
        if units >= col16:
            break
        code_point = ord(ch)
        units += 2 if code_point > 0xFFFF else 1
        offset += _utf8_width(code_point)
    return offset


def byte_to_utf16(line: str, byte_col: int) -> int:
    """
    Convert a UTF-8 byte offset on `line` to a UTF-16 column.

    Offsets past the end of the line clamp to the line's UTF-16 length.
    """
    units = 0
    offset = 0
    for ch in line:
        if offset >= byte_col:
            break
        code_point = ord(ch)
        units += 2 if code_point > 0xFFFF else 1
        offset += _utf8_width(code_point)
    return units


# =============================================================================
# Symbol Resolution
# =============================================================================


def is_symbol_byte(value: int) -> bool:
    return value in _SYMBOL_BYTES


def snap_to_symbol(line: bytes, col: int) -> int:
    """
    Move a cursor sitting just past an identifier back onto it.

    If `col` is on a non-symbol byte (or at end of line) and the byte before
    it belongs to a symbol, return col - 1. The column is clamped to the line.
    """
    col = min(max(col, 0), len(line))
    if col > 0 and (col == len(line) or not is_symbol_byte(line[col])):
        if is_symbol_byte(line[col - 1]):
            col -= 1
    return col


def word_bounds(line: bytes, col: int) -> Optional[tuple[int, int]]:
    """
    Expand around `col` over symbol bytes.

    Returns:
        (start, end) with `end` exclusive, or None when no symbol touches col.
    """
    if col < 0 or col > len(line):
        return None

    start = col
    while start > 0 and is_symbol_byte(line[start - 1]):
        start -= 1

    end = col
    while end < len(line) and is_symbol_byte(line[end]):
        end += 1

    if start == end:
        return None
    return start, end


def in_braces(line: bytes, col: int) -> bool:
    """True if `col` lies inside a `{{ ... }}` interpolation on this line."""
    open_ix = line.rfind(b"{{", 0, max(col, 0))
    if open_ix < 0:
        return False
    close_ix = line.find(b"}}", open_ix + 2)
    return close_ix >= 0 and col <= close_ix


def after_header_separator(line: bytes, col: int) -> bool:
    """True if `col` lies past the recipe header colon of this line."""
    sep = header_separator(line)
    return sep >= 0 and col > sep


class LookupContext(Enum):
    """Which symbol tables a cursor position is resolved against."""

    VARIABLE = "variable"
    RECIPE = "recipe"
    ANY = "any"


def classify_context(line: bytes, col: int) -> LookupContext:
    """
    Decide which tables to search for the symbol at byte column `col`.

    Inside `{{ }}` only variables can be referenced; past a recipe header's
    colon only recipes (dependencies). Elsewhere recipes win over variables.
    """
    if in_braces(line, col):
        return LookupContext.VARIABLE
    if after_header_separator(line, col):
        return LookupContext.RECIPE
    return LookupContext.ANY


def resolve_definitions(
    index: SymbolIndex, name: str, context: LookupContext
) -> list[Definition]:
    """Find the definitions of `name` allowed by `context`."""
    if context is LookupContext.VARIABLE:
        return index.lookup_variable(name)
    if context is LookupContext.RECIPE:
        return index.lookup_recipe(name)
    return index.lookup_recipe(name) or index.lookup_variable(name)


# =============================================================================
# Documents
# =============================================================================


@dataclass(frozen=True)
class TextDocument:
    """An open document together with its parse result and symbol index."""

    uri: str
    text: str
    version: int
    parse: ParseResult
    index: SymbolIndex

    @classmethod
    def create(cls, uri: str, text: str, version: int = 0) -> "TextDocument":
        """Parse and index `text`."""
        parse = parse_justfile(text)
        return cls(
            uri=uri, text=text, version=version, parse=parse, index=build_index(parse)
        )

    def get_line(self, line: int) -> Optional[bytes]:
        """Get a specific line (0-based) as UTF-8 bytes, or None."""
        return self.parse.line_bytes(line)


@dataclass(frozen=True)
class Cursor:
    """The symbol found under a client position."""

    line: int
    line_bytes: bytes
    column: int  # raw byte column, before snapping
    start: int
    end: int

    @property
    def word(self) -> str:
        return self.line_bytes[self.start : self.end].decode("ascii")

    @property
    def line_text(self) -> str:
        return _decode_line(self.line_bytes)


def _decode_line(line: bytes) -> str:
    return line.decode("utf-8", "surrogatepass")


def symbol_at(doc: TextDocument, line: int, character: int) -> Optional[Cursor]:
    """
    Find the symbol under a UTF-16 position in `doc`.

    Returns None for lines outside the document or positions not touching a
    symbol.
    """
    line_bytes = doc.get_line(line)
    if line_bytes is None:
        return None

    column = utf16_to_byte(_decode_line(line_bytes), character)
    bounds = word_bounds(line_bytes, snap_to_symbol(line_bytes, column))
    if bounds is None:
        return None

    start, end = bounds
    return Cursor(line=line, line_bytes=line_bytes, column=column, start=start, end=end)


def definition_range(doc: TextDocument, node: Definition) -> dict[str, Any]:
    """The UTF-16 range of a definition's name on its own line."""
    line_text = _decode_line(doc.get_line(node.line) or b"")
    name_length = node.name.end - node.name.start + 1
    return make_range(
        node.line,
        byte_to_utf16(line_text, node.col),
        node.line,
        byte_to_utf16(line_text, node.col + name_length),
    )


# =============================================================================
# Server
# =============================================================================


class ServerState(IntEnum):
    """Server lifecycle. Transitions only move forward."""

    INITIALIZING = 0
    READY = 1
    SHUTTING_DOWN = 2
    TERMINATED = 3


@dataclass
class JustLanguageServer:
    """
    Justfile Language Server Protocol implementation.

    This server provides navigation features for justfiles.
    """

    # Protocol handler
    protocol: JsonRpcProtocol = field(default_factory=JsonRpcProtocol)

    # Open documents: uri -> TextDocument
    documents: dict[str, TextDocument] = field(default_factory=dict)

    # Server state
    state: ServerState = ServerState.INITIALIZING
    shutdown_requested: bool = False
    exit_code: int = 0

    # Logging
    log_file: Any = None

    def __post_init__(self):
        """Set up the server after initialization."""
        self.protocol.set_logger(self._log)
        self._register_handlers()

    @property
    def shutting_down(self) -> bool:
        return self.state >= ServerState.SHUTTING_DOWN

    def _log(self, message: str) -> None:
        """Log a message for debugging."""
        if self.log_file:
            self.log_file.write(f"{message}\n")
            self.log_file.flush()
        # LSP clients typically capture stderr
        print(f"[{SERVER_NAME}] {message}", file=sys.stderr)
        sys.stderr.flush()

    def _advance(self, state: ServerState) -> None:
        if state > self.state:
            self._log(f"State {self.state.name} -> {state.name}")
            self.state = state

    def _register_handlers(self) -> None:
        """Register all LSP method handlers."""
        # Lifecycle
        self.protocol.register_request_handler("initialize", self._handle_initialize)
        self.protocol.register_notification_handler(
            "initialized", self._handle_initialized
        )
        self.protocol.register_request_handler("shutdown", self._handle_shutdown)
        self.protocol.register_notification_handler("exit", self._handle_exit)

        # Text document synchronization
        self.protocol.register_notification_handler(
            "textDocument/didOpen", self._handle_did_open
        )
        self.protocol.register_notification_handler(
            "textDocument/didChange", self._handle_did_change
        )
        self.protocol.register_notification_handler(
            "textDocument/didClose", self._handle_did_close
        )

        # Language features
        self.protocol.register_request_handler(
            "textDocument/definition", self._handle_definition
        )
        self.protocol.register_request_handler("textDocument/hover", self._handle_hover)

    # =========================================================================
    # Lifecycle Methods
    # =========================================================================

    def _handle_initialize(self, params: dict[str, Any]) -> HandlerResult:
        """Handle the initialize request."""
        self._log("Received initialize request")
        self._advance(ServerState.READY)

        return Ok(
            {
                "capabilities": {
                    "textDocumentSync": {
                        "openClose": True,
                        "change": TextDocumentSyncKind.FULL,
                    },
                    "definitionProvider": True,
                    "hoverProvider": True,
                    "positionEncoding": "utf-16",
                },
                "serverInfo": {
                    "name": SERVER_NAME,
                    "version": __version__,
                },
            }
        )

    def _handle_initialized(self, params: dict[str, Any]) -> None:
        """Handle the initialized notification."""
        self._log("Server initialized")

    def _handle_shutdown(self, params: dict[str, Any]) -> HandlerResult:
        """Handle the shutdown request."""
        self._log("Shutdown requested")
        self.shutdown_requested = True
        self._advance(ServerState.SHUTTING_DOWN)
        return Ok(None)

    def _handle_exit(self, params: dict[str, Any]) -> None:
        """Handle the exit notification."""
        self._log("Exit notification received")
        self.exit_code = 0 if self.shutdown_requested else 1
        self._advance(ServerState.SHUTTING_DOWN)

    # =========================================================================
    # Document Synchronization
    # =========================================================================

    def _handle_did_open(self, params: dict[str, Any]) -> None:
        """Handle textDocument/didOpen notification."""
        text_document = params.get("textDocument", {})
        uri = text_document.get("uri", "")
        version = text_document.get("version", 0)
        content = text_document.get("text", "")

        self._log(f"Document opened: {uri}")
        self._store(TextDocument.create(uri, content, version))

    def _handle_did_change(self, params: dict[str, Any]) -> None:
        """Handle textDocument/didChange notification."""
        text_document = params.get("textDocument", {})
        uri = text_document.get("uri", "")
        version = text_document.get("version", 0)
        content_changes = params.get("contentChanges", [])

        # Full sync: only the first change entry is honored
        if not content_changes:
            return

        if uri not in self.documents:
            self._log(f"didChange for unopened document: {uri}")

        text = content_changes[0].get("text", "")
        self._store(TextDocument.create(uri, text, version))

    def _handle_did_close(self, params: dict[str, Any]) -> None:
        """Handle textDocument/didClose notification."""
        text_document = params.get("textDocument", {})
        uri = text_document.get("uri", "")

        self._log(f"Document closed: {uri}")
        self.documents.pop(uri, None)

    def _store(self, doc: TextDocument) -> None:
        self.documents[doc.uri] = doc
        errors = doc.parse.errors
        if errors:
            self._log(f"{doc.uri}: {len(errors)} parse error(s), first: {errors[0]}")

    # =========================================================================
    # Language Features
    # =========================================================================

    def _cursor(self, params: dict[str, Any]) -> Optional[tuple[TextDocument, Cursor]]:
        """Look up the document and symbol a position request points at."""
        uri = params.get("textDocument", {}).get("uri", "")
        position = params.get("position", {})
        line = position.get("line", 0)
        character = position.get("character", 0)

        doc = self.documents.get(uri)
        if doc is None:
            return None

        cursor = symbol_at(doc, line, character)
        if cursor is None:
            return None
        return doc, cursor

    def _handle_definition(self, params: dict[str, Any]) -> HandlerResult:
        """Handle textDocument/definition request."""
        found = self._cursor(params)
        if found is None:
            return Ok(None)

        doc, cursor = found
        context = classify_context(cursor.line_bytes, cursor.column)
        self._log(f"Definition requested for: {cursor.word} ({context.value})")

        definitions = resolve_definitions(doc.index, cursor.word, context)
        if not definitions:
            return Ok(None)

        return Ok(
            [make_location(doc.uri, definition_range(doc, d)) for d in definitions]
        )

    def _handle_hover(self, params: dict[str, Any]) -> HandlerResult:
        """
        Handle textDocument/hover request.

        Unlike go-to-definition, hover ignores the `{{ }}` and header context
        and always prefers a recipe over a variable of the same name.
        """
        found = self._cursor(params)
        if found is None:
            return Ok(None)

        doc, cursor = found
        word = cursor.word
        self._log(f"Hover requested for: {word}")

        if doc.index.lookup_recipe(word):
            kind = "recipe"
        elif doc.index.lookup_variable(word):
            kind = "variable"
        else:
            return Ok(None)

        line_text = cursor.line_text
        range_ = make_range(
            cursor.line,
            byte_to_utf16(line_text, cursor.start),
            cursor.line,
            byte_to_utf16(line_text, cursor.end),
        )
        return Ok(make_hover(f"{kind}: {word}", range_))

    # =========================================================================
    # Main Entry Point
    # =========================================================================

    def run(self) -> None:
        """Run the language server main loop until shutdown or end of input."""
        self._log("Just Language Server starting")

        try:
            self.protocol.run(should_stop=lambda: self.shutting_down)
        except KeyboardInterrupt:
            self._log("Interrupted")
        except Exception as e:
            self._log(f"Server error: {e}")
            traceback.print_exc(file=sys.stderr)
            raise
        finally:
            self._advance(ServerState.TERMINATED)
            self._log("Server stopped")


def start_server(
    log_path: Optional[str] = None, input_stream=None, output_stream=None
) -> int:
    """
    Start the Just language server.

    Args:
        log_path: Optional path to a log file for debugging.
        input_stream: Binary stream to read from (default: stdin).
        output_stream: Binary stream to write to (default: stdout).

    Returns:
        The process exit code: 1 if `exit` arrived without `shutdown`.
    """
    log_file = None
    if log_path:
        log_file = open(log_path, "w")

    try:
        protocol = JsonRpcProtocol(
            reader=ProtocolReader(input_stream),
            writer=ProtocolWriter(output_stream),
        )
        server = JustLanguageServer(protocol=protocol, log_file=log_file)
        server.run()
        return server.exit_code
    finally:
        if log_file:
            log_file.close()
