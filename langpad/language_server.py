# langpad/language_server.py
"""
Worker process entry point: ``python -m langpad.language_server``.

The process waits for one handshake message on stdin, then speaks a small
subset of LSP over the same framed channel. After every open or change it
publishes a ``browser/DocumentChange`` notification with the document's
content and diagnostics.
"""

import json
import logging
import sys
from typing import Any, BinaryIO, Dict, List, Optional, Tuple

from lsprotocol import types as lsp

from .grammar import Grammar, parse_grammar
from .interpreter import SampleParser
from .protocol import (
    DOCUMENT_CHANGE,
    LS_STARTED,
    START_DEFINITION,
    START_WITH_GRAMMAR,
    WORKER_ERROR,
    DocumentChange,
    encode_message,
    read_message_sync,
)

logger = logging.getLogger("langpad.language_server")

METHOD_NOT_FOUND = -32601


class DefinitionService:
    """Validates grammar text; the published content is the text itself."""

    def analyze(self, text: str) -> Tuple[str, List[lsp.Diagnostic]]:
        return text, parse_grammar(text).diagnostics


class SampleService:
    """Parses programs with a compiled grammar; the published content is the AST as JSON."""

    def __init__(self, grammar: Grammar):
        self.parser = SampleParser(grammar)

    def analyze(self, text: str) -> Tuple[str, List[lsp.Diagnostic]]:
        result = self.parser.parse(text)
        return json.dumps(result.ast), result.diagnostics


class LanguageServer:
    def __init__(self, stdin: BinaryIO, stdout: BinaryIO):
        self.stdin = stdin
        self.stdout = stdout
        self.service = None
        self.documents: Dict[str, str] = {}
        self.shutdown_requested = False

    def send(self, payload: Dict[str, Any]) -> None:
        self.stdout.write(encode_message(payload))
        self.stdout.flush()

    def handshake(self) -> bool:
        message = read_message_sync(self.stdin)
        if message is None:
            logger.error("Channel closed before the handshake")
            return False
        message_type = message.get("type")
        if message_type == START_DEFINITION:
            self.service = DefinitionService()
        elif message_type == START_WITH_GRAMMAR:
            result = parse_grammar(message.get("grammar") or "")
            if result.has_errors:
                first = result.errors[0]
                self.send({
                    "type": WORKER_ERROR,
                    "message": f"Grammar has {len(result.errors)} error(s); first at line "
                               f"{first.range.start.line + 1}: {first.message}",
                })
                return False
            self.service = SampleService(result.grammar)
        else:
            self.send({"type": WORKER_ERROR, "message": f"Unknown handshake message {message_type!r}"})
            return False
        self.send({"type": LS_STARTED})
        logger.info("Worker started (%s)", type(self.service).__name__)
        return True

    def run(self) -> int:
        if not self.handshake():
            return 1
        while True:
            try:
                message = read_message_sync(self.stdin)
            except ValueError as exc:
                logger.error("Malformed message: %s", exc)
                return 1
            if message is None:
                return 0 if self.shutdown_requested else 1
            if message.get("method") == lsp.EXIT:
                return 0 if self.shutdown_requested else 1
            self.handle(message)

    def handle(self, message: Dict[str, Any]) -> None:
        method = message.get("method")
        params = message.get("params") or {}
        request_id = message.get("id")

        if method == lsp.INITIALIZE:
            self._respond(request_id, {
                "capabilities": {"textDocumentSync": int(lsp.TextDocumentSyncKind.Full)},
                "serverInfo": {"name": "langpad-worker"},
            })
        elif method == lsp.SHUTDOWN:
            self.shutdown_requested = True
            self._respond(request_id, None)
        elif method == lsp.TEXT_DOCUMENT_DID_OPEN:
            document = params.get("textDocument", {})
            self._update(document.get("uri", ""), document.get("text", ""))
        elif method == lsp.TEXT_DOCUMENT_DID_CHANGE:
            changes = params.get("contentChanges") or []
            if changes:
                self._update(params.get("textDocument", {}).get("uri", ""), changes[-1].get("text", ""))
        elif request_id is not None:
            self.send({"jsonrpc": "2.0", "id": request_id,
                       "error": {"code": METHOD_NOT_FOUND, "message": f"Method not found: {method}"}})
        else:
            logger.debug("Ignoring notification %s", method)

    def _respond(self, request_id: Optional[int], result: Any) -> None:
        self.send({"jsonrpc": "2.0", "id": request_id, "result": result})

    def _update(self, uri: str, text: str) -> None:
        self.documents[uri] = text
        content, diagnostics = self.service.analyze(text)
        change = DocumentChange(uri=uri, content=content, diagnostics=diagnostics)
        self.send({"jsonrpc": "2.0", "method": DOCUMENT_CHANGE, "params": change.to_params()})


def main() -> int:
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.INFO,
        format="%(levelname)-8s - %(name)-12s - %(message)s",
    )
    return LanguageServer(sys.stdin.buffer, sys.stdout.buffer).run()


if __name__ == "__main__":
    sys.exit(main())
