# langpad/protocol.py
"""
Wire format shared by the orchestrator and its worker processes.

Every message travels as a JSON object behind an LSP-style
``Content-Length`` header, in both directions. Handshake messages carry a
``type`` field; everything after the handshake is JSON-RPC 2.0.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, List, Optional

from lsprotocol import converters
from lsprotocol import types as lsp

logger = logging.getLogger(__name__)

# --- Handshake message types ---
START_WITH_GRAMMAR = "startWithGrammar"
START_DEFINITION = "startDefinition"
LS_STARTED = "lsStartedWithGrammar"
WORKER_ERROR = "error"

# --- Custom notification published after every parse ---
DOCUMENT_CHANGE = "browser/DocumentChange"

MAX_HEADER_BYTES = 4096

_converter = converters.get_converter()


def encode_message(payload: Dict[str, Any]) -> bytes:
    """Serializes one message, header included."""
    body = json.dumps(payload).encode("utf-8")
    header = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
    return header + body


def parse_content_length(header: bytes) -> int:
    """
    Extracts the body length from a raw header block.

    Raises:
        ValueError: If the header has no usable Content-Length field.
    """
    for line in header.decode("ascii", "replace").split("\r\n"):
        name, _, value = line.partition(":")
        if name.strip().lower() == "content-length":
            length = int(value.strip())
            if length < 0:
                raise ValueError(f"Negative Content-Length: {length}")
            return length
    raise ValueError(f"Missing Content-Length in header: {header[:200]!r}")


async def read_message(reader: asyncio.StreamReader) -> Optional[Dict[str, Any]]:
    """
    Reads one framed message from an asyncio stream.

    Returns:
        The decoded JSON object, or None once the stream reached EOF.

    Raises:
        ValueError: On a malformed header or a body that is not JSON.
    """
    try:
        header = await reader.readuntil(b"\r\n\r\n")
        body = await reader.readexactly(parse_content_length(header))
    except asyncio.IncompleteReadError:
        return None
    except asyncio.LimitOverrunError as exc:
        raise ValueError("Message header exceeds the stream buffer limit") from exc
    return json.loads(body.decode("utf-8"))


def read_message_sync(stream: BinaryIO) -> Optional[Dict[str, Any]]:
    """
    Blocking counterpart of :func:`read_message`, used inside worker processes.

    The header is read byte by byte so a partial read never blocks on data
    that belongs to the next message.
    """
    header = b""
    while not header.endswith(b"\r\n\r\n"):
        chunk = stream.read(1)
        if not chunk:
            return None
        header += chunk
        if len(header) > MAX_HEADER_BYTES:
            raise ValueError("Header exceeded 4096 bytes, possible stream corruption")

    remaining = parse_content_length(header)
    body = b""
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            return None
        body += chunk
        remaining -= len(chunk)
    return json.loads(body.decode("utf-8"))


def unstructure(obj: Any) -> Any:
    """Converts an lsprotocol object into its JSON-ready form."""
    return _converter.unstructure(obj)


def structure_diagnostics(items: List[Dict[str, Any]]) -> List[lsp.Diagnostic]:
    return [_converter.structure(item, lsp.Diagnostic) for item in items]


@dataclass
class DocumentChange:
    """
    Payload of a ``browser/DocumentChange`` notification.

    ``content`` is the document text for the definition session and the
    JSON-serialized AST for a sample session.
    """
    uri: str
    content: str
    diagnostics: List[lsp.Diagnostic] = field(default_factory=list)

    @classmethod
    def from_params(cls, params: Optional[Dict[str, Any]]) -> "DocumentChange":
        params = params or {}
        return cls(
            uri=params.get("uri", ""),
            content=params.get("content", ""),
            diagnostics=structure_diagnostics(params.get("diagnostics") or []),
        )

    def to_params(self) -> Dict[str, Any]:
        return {
            "uri": self.uri,
            "content": self.content,
            "diagnostics": [unstructure(d) for d in self.diagnostics],
        }

    @property
    def errors(self) -> List[lsp.Diagnostic]:
        """Diagnostics with severity 1 (Error)."""
        return [d for d in self.diagnostics if d.severity == lsp.DiagnosticSeverity.Error]
