"""In-process stand-ins for workers and language clients."""

import asyncio
import itertools
import json
from typing import Any, Callable, Dict, List, Optional

from lsprotocol import types as lsp

from langpad.disposable import Disposable
from langpad.errors import WorkerStartError
from langpad.protocol import DOCUMENT_CHANGE, DocumentChange

_pids = itertools.count(1000)


def make_diagnostic(message="boom", severity=lsp.DiagnosticSeverity.Error, line=0, code=None):
    return lsp.Diagnostic(
        range=lsp.Range(
            start=lsp.Position(line=line, character=0),
            end=lsp.Position(line=line, character=1),
        ),
        message=message,
        severity=severity,
        code=code,
    )


def change_params(content, diagnostics=(), uri="inmemory://test"):
    return DocumentChange(uri=uri, content=content, diagnostics=list(diagnostics)).to_params()


class FakeWorker:
    def __init__(self, name: str, source: Optional[str], log: List[tuple]):
        self.name = name
        self.source = source
        self.pid = next(_pids)
        self.log = log
        self.terminated = False

    @property
    def is_alive(self) -> bool:
        return not self.terminated

    async def terminate(self) -> None:
        if self.terminated:
            return
        self.terminated = True
        self.log.append(("terminate", self.pid))


class FakeSpawner:
    """
    Replaces ``spawn_session``/``spawn_definition_session``.

    ``fail_with`` makes the next handshakes fail; ``reject`` fails only the
    grammars it returns True for; ``gate`` holds handshakes open until it is
    set.
    """

    def __init__(self, name: str = "sample-worker", log: Optional[List[tuple]] = None):
        self.name = name
        self.log = log if log is not None else []
        self.workers: List[FakeWorker] = []
        self.calls: List[Dict[str, Any]] = []
        self.fail_with: Optional[BaseException] = None
        self.reject: Optional[Callable[[Optional[str]], bool]] = None
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, grammar_source: Optional[str] = None, **kwargs) -> FakeWorker:
        self.calls.append({"grammar": grammar_source, **kwargs})
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        if self.reject is not None and self.reject(grammar_source):
            raise HANDSHAKE_REJECTED
        worker = FakeWorker(self.name, grammar_source, self.log)
        self.workers.append(worker)
        self.log.append(("spawn", worker.pid))
        return worker

    @property
    def alive(self) -> List[FakeWorker]:
        return [w for w in self.workers if w.is_alive]


class FakeClient:
    """
    Language client that answers model changes the way a worker would: the
    definition side publishes the text, the sample side a one-node AST.
    """

    def __init__(self, worker: FakeWorker, model, log: List[tuple], kind: str,
                 start_error: Optional[BaseException] = None,
                 stop_error: Optional[BaseException] = None):
        self.worker = worker
        self.model = model
        self.log = log
        self.kind = kind
        self.start_error = start_error
        self.stop_error = stop_error
        self.running = False
        self.handlers: Dict[str, List[Callable[[Any], None]]] = {}
        self._model_subscription: Optional[Disposable] = None

    def is_running(self) -> bool:
        return self.running

    def on_notification(self, method: str, handler: Callable[[Any], None]) -> Disposable:
        handlers = self.handlers.setdefault(method, [])
        handlers.append(handler)
        return Disposable(lambda: handlers.remove(handler) if handler in handlers else None)

    async def start(self) -> None:
        await asyncio.sleep(0)
        if self.start_error is not None:
            raise self.start_error
        self.running = True
        self.log.append(("start", self.worker.pid))
        self._model_subscription = self.model.on_did_change(lambda model: self.publish())
        asyncio.get_running_loop().call_soon(self.publish)

    async def stop(self, timeout: Optional[float] = None) -> None:
        self.log.append(("stop", self.worker.pid))
        self.running = False
        if self._model_subscription is not None:
            self._model_subscription.dispose()
        if self.stop_error is not None:
            raise self.stop_error

    def emit(self, method: str, params: Any) -> None:
        for handler in list(self.handlers.get(method, ())):
            handler(params)

    def publish(self) -> None:
        if not self.running:
            return
        text = self.model.get_value()
        if self.kind == "sample":
            content = json.dumps({"$type": "Model", "text": text})
        else:
            content = text
        self.emit(DOCUMENT_CHANGE, change_params(content, uri=self.model.uri))


class ClientFactory:
    """Builds FakeClients; ``missing`` makes it return None instead."""

    def __init__(self, log: List[tuple]):
        self.log = log
        self.clients: List[FakeClient] = []
        self.missing = False
        self.start_error: Optional[BaseException] = None
        self.stop_error: Optional[BaseException] = None

    def __call__(self, worker, model):
        if self.missing:
            return None
        kind = "definition" if worker.name == "definition-worker" else "sample"
        client = FakeClient(worker, model, self.log, kind, self.start_error, self.stop_error)
        self.clients.append(client)
        return client


HANDSHAKE_REJECTED = WorkerStartError("Grammar has 1 error(s); first at line 1: bad")
