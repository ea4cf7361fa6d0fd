# langpad/client.py
import asyncio
import enum
import logging
import os
from typing import Any, Callable, Dict, List, Optional

from lsprotocol import types as lsp

from .disposable import Disposable
from .editor import EditorModel
from .protocol import unstructure
from .worker import WorkerHandle

logger = logging.getLogger(__name__)

NotificationHandler = Callable[[Any], None]


class ClientState(enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class LanguageClient:
    """
    Connects one editor model to one worker.

    The client performs the LSP ``initialize`` exchange, opens the model's
    document, forwards every model change as a full-text ``didChange`` and
    routes worker notifications to handlers registered per method.
    """

    def __init__(self, worker: WorkerHandle, model: EditorModel, name: Optional[str] = None):
        self.worker = worker
        self.model = model
        self.name = name or model.language_id
        self.state = ClientState.STOPPED
        self.server_capabilities: Dict[str, Any] = {}
        self._handlers: Dict[str, List[NotificationHandler]] = {}
        self._subscriptions: List[Disposable] = []

    def is_running(self) -> bool:
        return self.state is ClientState.RUNNING and self.worker.is_alive

    def on_notification(self, method: str, handler: NotificationHandler) -> Disposable:
        handlers = self._handlers.setdefault(method, [])
        handlers.append(handler)

        def _remove() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return Disposable(_remove)

    async def start(self) -> None:
        if self.state is not ClientState.STOPPED:
            logger.warning("Client %s: start() called while %s", self.name, self.state.value)
            return
        self.state = ClientState.STARTING
        self._subscriptions.append(self.worker.add_listener(self._dispatch))
        try:
            result = await self.worker.request(lsp.INITIALIZE, {
                "processId": os.getpid(),
                "rootUri": None,
                "capabilities": {},
                "clientInfo": {"name": "langpad"},
            })
            self.server_capabilities = (result or {}).get("capabilities", {})
            self.worker.notify(lsp.INITIALIZED, {})
            self.worker.notify(lsp.TEXT_DOCUMENT_DID_OPEN, unstructure(lsp.DidOpenTextDocumentParams(
                text_document=lsp.TextDocumentItem(
                    uri=self.model.uri,
                    language_id=self.model.language_id,
                    version=self.model.version,
                    text=self.model.get_value(),
                )
            )))
        except BaseException:
            self._release()
            self.state = ClientState.STOPPED
            raise
        self._subscriptions.append(self.model.on_did_change(self._on_model_change))
        self.state = ClientState.RUNNING
        logger.debug("Client %s started against worker %s", self.name, self.worker.name)

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Shuts the server side down and detaches from the model.

        Must complete before the worker is terminated, otherwise in-flight
        requests are orphaned. ``timeout`` bounds the shutdown request; None
        waits as long as the worker takes.
        """
        if self.state in (ClientState.STOPPED, ClientState.STOPPING):
            return
        self.state = ClientState.STOPPING
        self._release()
        try:
            if self.worker.is_alive:
                await asyncio.wait_for(self.worker.request(lsp.SHUTDOWN), timeout)
                self.worker.notify(lsp.EXIT)
        finally:
            self.state = ClientState.STOPPED
            logger.debug("Client %s stopped", self.name)

    def _release(self) -> None:
        for subscription in self._subscriptions:
            subscription.dispose()
        self._subscriptions.clear()

    def _on_model_change(self, model: EditorModel) -> None:
        if self.state is not ClientState.RUNNING:
            return
        self.worker.notify(lsp.TEXT_DOCUMENT_DID_CHANGE, {
            "textDocument": {"uri": model.uri, "version": model.version},
            "contentChanges": [{"text": model.get_value()}],
        })

    def _dispatch(self, method: str, params: Any) -> None:
        for handler in list(self._handlers.get(method, ())):
            handler(params)
