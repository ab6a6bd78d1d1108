"""
justls.lsp.protocol - JSON-RPC 2.0 Protocol Implementation for LSP

This module provides low-level JSON-RPC 2.0 protocol handling for the
Language Server Protocol. It handles:
- Message framing with Content-Length headers
- Routing requests and notifications to registered handlers
- Building response and error envelopes
- Reading from stdin and writing to stdout

The LSP uses JSON-RPC 2.0 over stdio with HTTP-style headers:
    Content-Length: <length>\r\n
    \r\n
    <JSON body>
"""

import json
import sys
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Generic, Iterator, Optional, TypeVar, Union

# =============================================================================
# JSON-RPC Error Codes
# =============================================================================


class ErrorCode(IntEnum):
    """JSON-RPC error codes used by the server."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601

    # Generic failure of a registered handler
    SERVER_ERROR = -32000


class JsonRpcError(Exception):
    """Exception representing a JSON-RPC error."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-RPC error object."""
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.data is not None:
            error["data"] = self.data
        return error


# =============================================================================
# Handler Results
# =============================================================================

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome of a request handler."""

    value: T


@dataclass(frozen=True)
class Err:
    """Failed outcome of a request handler, carrying a description."""

    error: str


HandlerResult = Union[Ok[Any], Err]
RequestHandler = Callable[[dict[str, Any]], HandlerResult]
NotificationHandler = Callable[[dict[str, Any]], None]


def _discard(message: str) -> None:
    pass


# Frames larger than this are treated as a corrupt header
MAX_CONTENT_LENGTH = 64 * 1024 * 1024


# =============================================================================
# Protocol Transport
# =============================================================================


class ProtocolReader:
    """
    Reads LSP messages from an input stream.

    LSP messages have HTTP-style headers followed by a JSON body:
        Content-Length: <length>\r\n
        \r\n
        <JSON body>

    The body is read into a buffer that is reused across messages and only
    grows when a larger frame arrives.
    """

    def __init__(self, input_stream=None, log: Optional[Callable[[str], None]] = None):
        """
        Initialize the reader.

        Args:
            input_stream: The binary input stream to read from
                (default: sys.stdin.buffer)
            log: Callback for diagnostics about dropped frames.
        """
        self.input = input_stream or sys.stdin.buffer
        self.log = log or _discard
        self._buffer = bytearray(4096)
        self._lock = threading.Lock()

    def read_message(self) -> Optional[Any]:
        """
        Read and decode a single LSP message.

        Returns:
            The decoded JSON value, or None at end of stream. A missing or
            non-positive Content-Length also yields None.

        Raises:
            JsonRpcError: If the body is not valid UTF-8 JSON.
        """
        with self._lock:
            content_length = self._read_headers()
            if content_length is None:
                return None

            view = self._read_body(content_length)
            if view is None:
                self.log(f"Stream ended inside a {content_length} byte message")
                return None

            try:
                return json.loads(str(view, "utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise JsonRpcError(
                    ErrorCode.PARSE_ERROR,
                    f"Invalid JSON: {e}",
                )
            finally:
                view.release()

    def messages(self) -> Iterator[Any]:
        """Yield decoded messages until the stream ends."""
        message = self.read_message()
        while message is not None:
            yield message
            message = self.read_message()

    def _read_headers(self) -> Optional[int]:
        """
        Read LSP headers and return the Content-Length.

        Returns:
            The content length, or None if EOF or the length is unusable.
        """
        content_length: Optional[int] = None
        invalid = False

        while True:
            line = self.input.readline()
            if not line:
                return None

            line = line.decode("latin-1").strip()

            if not line:
                # Empty line marks end of headers
                break

            name, sep, value = line.partition(":")
            if sep and name.strip().lower() == "content-length":
                try:
                    content_length = int(value.strip())
                    invalid = False
                except ValueError:
                    self.log(f"Invalid Content-Length header: {line}")
                    content_length = None
                    invalid = True
            # Ignore other headers (like Content-Type)

        if invalid:
            return None
        if content_length is None:
            self.log("Message without a Content-Length header")
            return None
        if content_length <= 0:
            self.log(f"Non-positive Content-Length: {content_length}")
            return None
        if content_length > MAX_CONTENT_LENGTH:
            self.log(f"Content-Length too large: {content_length}")
            return None

        return content_length

    def _read_body(self, length: int) -> Optional[memoryview]:
        """Fill the reusable buffer with exactly `length` bytes."""
        if len(self._buffer) < length:
            self._buffer = bytearray(length)

        view = memoryview(self._buffer)[:length]
        received = 0
        while received < length:
            count = self.input.readinto(view[received:])
            if not count:
                view.release()
                return None
            received += count
        return view


class ProtocolWriter:
    """
    Writes LSP messages to an output stream.

    Formats messages with proper Content-Length headers.
    """

    def __init__(self, output_stream=None):
        """
        Initialize the writer.

        Args:
            output_stream: The output stream to write to (default: sys.stdout.buffer)
        """
        self.output = output_stream or sys.stdout.buffer
        self._lock = threading.Lock()

    def write_message(self, message: Any) -> None:
        """
        Write a JSON-RPC message with proper LSP framing.

        Args:
            message: The JSON-serializable message to write.
        """
        body = json.dumps(message, ensure_ascii=False, separators=(",", ":")).encode(
            "utf-8"
        )
        header = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")

        with self._lock:
            self.output.write(header)
            self.output.write(body)
            self.output.flush()


# =============================================================================
# JSON-RPC Protocol Handler
# =============================================================================


@dataclass
class JsonRpcProtocol:
    """
    High-level JSON-RPC protocol handler.

    Routes requests (messages with an id) and notifications (messages
    without one) to registered handlers and builds the reply envelopes.
    """

    reader: ProtocolReader = field(default_factory=ProtocolReader)
    writer: ProtocolWriter = field(default_factory=ProtocolWriter)

    # Request handlers: method -> callable returning Ok/Err
    _request_handlers: dict[str, RequestHandler] = field(default_factory=dict)

    # Notification handlers: method -> callable
    _notification_handlers: dict[str, NotificationHandler] = field(
        default_factory=dict
    )

    log: Callable[[str], None] = _discard

    def set_logger(self, log: Callable[[str], None]) -> None:
        """Route protocol and transport diagnostics to `log`."""
        self.log = log
        self.reader.log = log

    def register_request_handler(self, method: str, handler: RequestHandler) -> None:
        """
        Register a handler for a request method.

        The handler receives the params dict and returns Ok(result) or
        Err(description). A later registration for the same method replaces
        the earlier one.

        Args:
            method: The JSON-RPC method name.
            handler: The handler function.
        """
        self._request_handlers[method] = handler

    def register_notification_handler(
        self, method: str, handler: NotificationHandler
    ) -> None:
        """
        Register a handler for a notification method.

        The handler receives the params dict and should not return anything.
        A later registration for the same method replaces the earlier one.

        Args:
            method: The JSON-RPC method name.
            handler: The handler function.
        """
        self._notification_handlers[method] = handler

    def handle_message(self, message: Any) -> Optional[dict[str, Any]]:
        """
        Handle an incoming JSON-RPC message.

        Args:
            message: The decoded JSON message.

        Returns:
            A response message if the input was a request, None otherwise.
        """
        if not isinstance(message, dict):
            return self._make_error_response(
                None,
                ErrorCode.INVALID_REQUEST,
                "Message must be a JSON object",
            )

        msg_id = message.get("id")
        method = message.get("method")
        if not isinstance(method, str):
            if msg_id is None:
                return None
            return self._make_error_response(
                msg_id,
                ErrorCode.INVALID_REQUEST,
                "Missing method field",
            )

        params = message.get("params")
        if params is None:
            params = {}

        if msg_id is not None:
            return self._handle_request(msg_id, method, params)

        self._handle_notification(method, params)
        return None

    def _handle_request(
        self,
        msg_id: Union[int, str],
        method: str,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        """Handle an incoming request."""
        handler = self._request_handlers.get(method)

        if handler is None:
            return self._make_error_response(
                msg_id,
                ErrorCode.METHOD_NOT_FOUND,
                f"Method not found: {method}",
            )

        try:
            outcome = handler(params)
            if isinstance(outcome, Err):
                return self._make_error_response(
                    msg_id, ErrorCode.SERVER_ERROR, "Handler error", outcome.error
                )
            result = outcome.value
        except JsonRpcError as e:
            return self._make_error_response(msg_id, e.code, e.message, e.data)
        except Exception as e:
            self.log(f"Request {method} failed: {e!r}")
            return self._make_error_response(
                msg_id,
                ErrorCode.SERVER_ERROR,
                "Handler error",
                str(e),
            )

        return {
            "jsonrpc": "2.0",
            "id": msg_id,
            "result": result,
        }

    def _handle_notification(self, method: str, params: dict[str, Any]) -> None:
        """Handle an incoming notification."""
        handler = self._notification_handlers.get(method)

        if handler is None:
            return

        try:
            handler(params)
        except Exception as e:
            # Notifications don't get responses, so the failure is only logged
            self.log(f"Notification {method} failed: {e!r}")

    def _make_error_response(
        self,
        msg_id: Optional[Union[int, str]],
        code: int,
        message: str,
        data: Any = None,
    ) -> dict[str, Any]:
        """Create a JSON-RPC error response."""
        return {
            "jsonrpc": "2.0",
            "id": msg_id,
            "error": JsonRpcError(code, message, data).to_dict(),
        }

    def run(self, should_stop: Optional[Callable[[], bool]] = None) -> None:
        """
        Run the protocol handler main loop.

        Reads one message at a time, dispatches it and writes the reply
        before reading the next. Stops at end of stream, or after a message
        once `should_stop()` returns True.
        """
        while True:
            try:
                message = self.reader.read_message()
            except JsonRpcError as e:
                self.log(f"Undecodable message: {e.message}")
                self.writer.write_message(
                    self._make_error_response(None, e.code, e.message, e.data)
                )
                continue

            if message is None:
                break

            response = self.handle_message(message)
            if response is not None:
                self.writer.write_message(response)

            if should_stop is not None and should_stop():
                break


# =============================================================================
# LSP-Specific Types
# =============================================================================


class TextDocumentSyncKind(IntEnum):
    """LSP text document sync kinds."""

    NONE = 0
    FULL = 1
    INCREMENTAL = 2


# =============================================================================
# LSP Helper Functions
# =============================================================================


def make_position(line: int, character: int) -> dict[str, int]:
    """Create an LSP Position object (0-based line and character)."""
    return {"line": line, "character": character}


def make_range(
    start_line: int, start_char: int, end_line: int, end_char: int
) -> dict[str, Any]:
    """Create an LSP Range object."""
    return {
        "start": make_position(start_line, start_char),
        "end": make_position(end_line, end_char),
    }


def make_location(uri: str, range_: dict[str, Any]) -> dict[str, Any]:
    """Create an LSP Location object."""
    return {"uri": uri, "range": range_}


def make_hover(
    contents: str,
    range_: Optional[dict[str, Any]] = None,
    kind: str = "plaintext",
) -> dict[str, Any]:
    """Create an LSP Hover object."""
    hover: dict[str, Any] = {
        "contents": {"kind": kind, "value": contents},
    }
    if range_ is not None:
        hover["range"] = range_
    return hover
