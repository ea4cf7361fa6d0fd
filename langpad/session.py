# langpad/session.py
"""
Playground state, session handles and the sample-session lifecycle.

A *session* is one worker process, the language client talking to it and
the editor model the client is attached to. The definition session lives as
long as the playground; the sample session is torn down and rebuilt every
time the grammar changes.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Set, Tuple

from .client import LanguageClient
from .disposable import Disposable
from .editor import EditorModel, EditorView
from .errors import LanguageClientMissing
from .grammar import parse_grammar
from .highlighting import GrammarLexer, generate_highlighting
from .protocol import DOCUMENT_CHANGE, DocumentChange
from .worker import WorkerHandle

logger = logging.getLogger(__name__)

DEFINITION_LANGUAGE_ID = "langpad-grammar"

SpawnSample = Callable[[str], Awaitable[WorkerHandle]]
SpawnDefinition = Callable[[], Awaitable[WorkerHandle]]
ClientFactory = Callable[[WorkerHandle, EditorModel], Optional[LanguageClient]]
SampleChangeHandler = Callable[["SessionHandle", DocumentChange], None]


@dataclass
class PlaygroundState:
    """
    The three pieces of state the playground keeps between sessions.

    ``definition_text`` is the last grammar that came back without errors;
    ``sample_text`` mirrors the live sample editor.
    """
    definition_text: str = ""
    sample_text: str = ""
    session_sequence: int = 0

    def next_session_id(self) -> int:
        """Returns a session id never handed out before."""
        session_id = self.session_sequence
        self.session_sequence += 1
        return session_id


class SessionStatus(enum.Enum):
    IDLE = "idle"
    DISPOSING = "disposing"
    CREATING = "creating"
    LIVE = "live"
    FAILED = "failed"


@dataclass(eq=False)
class SessionHandle:
    session_id: int
    worker: WorkerHandle
    client: LanguageClient
    view: EditorView
    model: EditorModel
    subscriptions: Set[Disposable] = field(default_factory=set)
    disposed: bool = False

    def subscribe(self, method: str, handler: Callable[[Any], None]) -> Disposable:
        subscription = self.client.on_notification(method, handler)
        self.subscriptions.add(subscription)
        return subscription

    def update_layout(self, size: Optional[Tuple[int, int]] = None) -> None:
        self.view.update_layout(size)

    async def dispose(self, stop_timeout: Optional[float] = None) -> None:
        """
        Tears the session down: client first, then subscriptions, then the
        worker. The worker is terminated even if stopping the client fails;
        the stop error is re-raised afterwards.
        """
        if self.disposed:
            return
        self.disposed = True
        try:
            await self.client.stop(stop_timeout)
        finally:
            for subscription in self.subscriptions:
                subscription.dispose()
            self.subscriptions.clear()
            self.model.dispose()
            await self.worker.terminate()
            logger.debug("Session %s disposed", self.session_id)


class _SessionFactory:
    def __init__(self, view: EditorView, client_factory: ClientFactory = LanguageClient):
        self.view = view
        self.client_factory = client_factory

    async def _assemble(self, session_id: int, worker: WorkerHandle, language_id: str,
                        code: str, lexer_cls) -> SessionHandle:
        """Wires a ready worker into a running session, or terminates it and drops the model."""
        model = None
        try:
            model = self.view.attach(language_id, code, lexer_cls)
            client = self.client_factory(worker, model)
            if client is None:
                raise LanguageClientMissing(f"Session {session_id} started without a language client")
            await client.start()
        except BaseException:
            if model is not None:
                model.dispose()
            await worker.terminate()
            raise
        return SessionHandle(session_id, worker, client, self.view, model)


class SampleSessionFactory(_SessionFactory):
    """Builds sample sessions for a given grammar."""

    def __init__(self, view: EditorView, spawn: SpawnSample,
                 client_factory: ClientFactory = LanguageClient):
        super().__init__(view, client_factory)
        self.spawn = spawn

    async def create(self, session_id: int, grammar_source: str, code: str) -> SessionHandle:
        worker = await self.spawn(grammar_source)
        try:
            grammar = parse_grammar(grammar_source).grammar
            lexer_cls = generate_highlighting(grammar, session_id)
        except BaseException:
            await worker.terminate()
            raise
        return await self._assemble(session_id, worker, str(session_id), code, lexer_cls)


class DefinitionSessionFactory(_SessionFactory):
    """Builds the single session that edits the grammar itself."""

    def __init__(self, view: EditorView, spawn: SpawnDefinition,
                 client_factory: ClientFactory = LanguageClient):
        super().__init__(view, client_factory)
        self.spawn = spawn

    async def create(self, session_id: int, code: str) -> SessionHandle:
        worker = await self.spawn()
        return await self._assemble(session_id, worker, DEFINITION_LANGUAGE_ID, code, GrammarLexer)


class SessionLifecycleManager:
    """
    Owns the live sample session and replaces it on demand.

    ``regenerate_sample_session`` never raises: failures are logged, reported
    through the display and leave no session live. Calls are serialized, so
    the live pointer has exactly one writer at a time and at most one sample
    session exists once a call returns.
    """

    def __init__(self, state: PlaygroundState, factory: SampleSessionFactory, display,
                 on_sample_change: Optional[SampleChangeHandler] = None,
                 dispose_timeout: Optional[float] = None):
        self.state = state
        self.factory = factory
        self.display = display
        self.on_sample_change = on_sample_change
        self.dispose_timeout = dispose_timeout
        self._live: Optional[SessionHandle] = None
        self._status = SessionStatus.IDLE
        self._lock = asyncio.Lock()

    @property
    def live(self) -> Optional[SessionHandle]:
        return self._live

    @property
    def status(self) -> SessionStatus:
        return self._status

    async def regenerate_sample_session(self, grammar_source: str, program_source: str) -> Optional[SessionHandle]:
        async with self._lock:
            session_id = self.state.next_session_id()

            previous, self._live = self._live, None
            if previous is not None:
                self._status = SessionStatus.DISPOSING
                await self._dispose_quietly(previous)

            self._status = SessionStatus.CREATING
            try:
                handle = await self.factory.create(session_id, grammar_source, program_source)
            except Exception as exc:
                self._status = SessionStatus.FAILED
                logger.error("Failed to start sample session %s: %s", session_id, exc, exc_info=True)
                self.display.report_exception(exc)
                return None

            handle.subscribe(DOCUMENT_CHANGE, lambda params: self._dispatch_sample_change(handle, params))
            self._live = handle
            self._status = SessionStatus.LIVE
            logger.info("Sample session %s is live (worker pid %s)", session_id, handle.worker.pid)
            return handle

    async def shutdown(self) -> None:
        async with self._lock:
            previous, self._live = self._live, None
            if previous is not None:
                await self._dispose_quietly(previous)
            self._status = SessionStatus.IDLE

    async def _dispose_quietly(self, handle: SessionHandle) -> None:
        try:
            await handle.dispose(self.dispose_timeout)
        except Exception as exc:
            logger.error("Failed to dispose sample session %s: %s", handle.session_id, exc, exc_info=True)
            self.display.report_exception(exc)

    def _dispatch_sample_change(self, handle: SessionHandle, params: Any) -> None:
        if handle is not self._live:
            logger.debug("Dropping notification from stale session %s", handle.session_id)
            return
        if self.on_sample_change is not None:
            self.on_sample_change(handle, DocumentChange.from_params(params))
