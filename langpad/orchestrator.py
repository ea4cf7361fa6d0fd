# langpad/orchestrator.py
"""
The playground orchestrator.

``Playground`` wires the definition session, the sample-session lifecycle
manager and the debounced scheduler together. Definition edits that parse
cleanly regenerate the sample session; sample edits re-render its AST.
"""

import functools
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .client import LanguageClient
from .config import DEFAULT_CONFIG, deep_merge
from .data import DSL_INITIAL_CONTENT, HELLO_WORLD_GRAMMAR
from .display import ConsoleDisplay
from .editor import EditorView
from .errors import LangpadError, PlaygroundSetupError
from .protocol import DOCUMENT_CHANGE, DocumentChange
from .scheduler import DebouncedScheduler
from .session import (
    ClientFactory,
    DefinitionSessionFactory,
    PlaygroundState,
    SampleSessionFactory,
    SessionHandle,
    SessionLifecycleManager,
)
from .share import decode_state
from .tree import AstNodeLocator, TreeRenderer
from .worker import spawn_definition_session, spawn_session, worker_command

logger = logging.getLogger(__name__)

DEFINITION_KEY = 1
SAMPLE_KEY = 2


@dataclass(frozen=True)
class PlaygroundParameters:
    grammar: str
    content: str


def _optional_seconds(value: Any) -> Optional[float]:
    """Config timeouts use 0 (or a negative value) for 'wait forever'."""
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds > 0 else None


class Playground:
    """
    Runs one grammar playground: a definition editor and a sample editor.

    Args:
        definition_view: Editor surface for the grammar.
        sample_view: Editor surface for the program written in the grammar.
        display: Error and loading-indicator collaborator.
        renderer: Receives the sample's parsed AST.
        config: Application config; see :data:`langpad.config.DEFAULT_CONFIG`.
        spawn, spawn_definition, client_factory, scheduler: Replaceable
            collaborators, mainly for tests.
    """

    def __init__(self, definition_view: EditorView, sample_view: EditorView,
                 display: ConsoleDisplay, renderer: TreeRenderer,
                 config: Optional[Dict[str, Any]] = None, *,
                 spawn=spawn_session, spawn_definition=spawn_definition_session,
                 client_factory: ClientFactory = LanguageClient,
                 scheduler: Optional[DebouncedScheduler] = None):
        self.config = deep_merge(DEFAULT_CONFIG, config or {})
        playground_cfg = self.config["playground"]
        self.update_delay_ms = playground_cfg.get("update_delay_ms", 150)
        handshake_timeout = _optional_seconds(playground_cfg.get("handshake_timeout"))
        command = worker_command(self.config)

        self.definition_view = definition_view
        self.sample_view = sample_view
        self.display = display
        self.renderer = renderer
        self.scheduler = scheduler or DebouncedScheduler()
        self.state = PlaygroundState()
        self.definition: Optional[SessionHandle] = None

        self._definition_factory = DefinitionSessionFactory(
            definition_view,
            functools.partial(spawn_definition, command=command, timeout=handshake_timeout),
            client_factory,
        )
        self.manager = SessionLifecycleManager(
            self.state,
            SampleSessionFactory(
                sample_view,
                functools.partial(spawn, command=command, timeout=handshake_timeout),
                client_factory,
            ),
            display,
            on_sample_change=self._on_sample_change,
            dispose_timeout=_optional_seconds(playground_cfg.get("dispose_timeout")),
        )

    async def setup(self, grammar: Optional[str] = None, content: Optional[str] = None,
                    encoded_grammar: Optional[str] = None, encoded_content: Optional[str] = None) -> None:
        """
        Brings the playground up.

        Plain ``grammar``/``content`` override the built-in Hello World
        example; encoded share-link parameters override those in turn when
        they decode cleanly.

        Raises:
            PlaygroundSetupError: If the definition session cannot be started.
        """
        self.state.definition_text = self._decoded(encoded_grammar, grammar or HELLO_WORLD_GRAMMAR, "grammar")
        self.state.sample_text = self._decoded(encoded_content, content or DSL_INITIAL_CONTENT, "content")

        self.display.clear_error()
        self.display.set_loading(True)
        try:
            self.definition = await self._definition_factory.create(
                self.state.next_session_id(), self.state.definition_text)
        except LangpadError as exc:
            self.display.set_loading(False)
            logger.error("Could not start the definition session: %s", exc, exc_info=True)
            raise PlaygroundSetupError(f"Could not start the definition session: {exc}") from exc

        await self.manager.regenerate_sample_session(self.state.definition_text, self.state.sample_text)
        self.definition.subscribe(DOCUMENT_CHANGE, self._on_definition_notification)
        self.display.set_loading(False)
        logger.info("Playground is up")

    @staticmethod
    def _decoded(encoded: Optional[str], default: str, what: str) -> str:
        if not encoded:
            return default
        decoded = decode_state(encoded)
        if decoded is None:
            logger.warning("Ignoring malformed encoded %s parameter", what)
            return default
        return decoded

    # --- notification handlers ---

    def _on_definition_notification(self, params: Any) -> None:
        if self.definition is None or not self.definition.client.is_running():
            logger.warning("Definition client is not running, dropping notification")
            return
        change = DocumentChange.from_params(params)
        if change.errors:
            # definition_text keeps the last grammar without errors and the
            # sample session stays as it is until the grammar is fixed.
            self.scheduler.cancel(DEFINITION_KEY)
            self.display.set_loading(False)
            self.display.report_diagnostics(change.diagnostics)
            return
        self.state.definition_text = change.content
        self.scheduler.schedule(DEFINITION_KEY, self.update_delay_ms, self._regenerate)

    async def _regenerate(self) -> None:
        self.display.set_loading(True)
        self.display.clear_error()
        try:
            await self.manager.regenerate_sample_session(self.state.definition_text, self.state.sample_text)
        finally:
            self.display.set_loading(False)

    def _on_sample_change(self, handle: SessionHandle, change: DocumentChange) -> None:
        self.state.sample_text = handle.model.get_value()
        self.scheduler.schedule(SAMPLE_KEY, self.update_delay_ms, functools.partial(self._render, change))

    def _render(self, change: DocumentChange) -> None:
        try:
            document = json.loads(change.content)
        except ValueError as exc:
            logger.error("Sample worker sent an unreadable AST: %s", exc)
            return
        self.renderer.render(document, AstNodeLocator())

    # --- editing ---

    def edit_definition(self, text: str) -> None:
        if self.definition is None:
            self.state.definition_text = text
            return
        self.definition.model.set_value(text)

    def edit_sample(self, text: str) -> None:
        live = self.manager.live
        if live is None:
            self.state.sample_text = text
            return
        live.model.set_value(text)

    def on_resize(self, size: Optional[Tuple[int, int]] = None) -> None:
        """Refreshes the layout of every existing session. Not debounced."""
        for handle in (self.definition, self.manager.live):
            if handle is not None:
                handle.update_layout(size)

    def get_playground_state(self) -> PlaygroundParameters:
        return PlaygroundParameters(grammar=self.state.definition_text, content=self.state.sample_text)

    async def shutdown(self) -> None:
        await self.scheduler.aclose()
        await self.manager.shutdown()
        definition, self.definition = self.definition, None
        if definition is not None:
            try:
                await definition.dispose(self.manager.dispose_timeout)
            except Exception as exc:
                logger.error("Failed to dispose the definition session: %s", exc, exc_info=True)
        logger.info("Playground shut down")


async def setup_playground(definition_view: EditorView, sample_view: EditorView,
                           display: ConsoleDisplay, renderer: TreeRenderer,
                           config: Optional[Dict[str, Any]] = None, **params: Optional[str]) -> Playground:
    """Creates a :class:`Playground` and runs its setup."""
    playground = Playground(definition_view, sample_view, display, renderer, config)
    await playground.setup(**params)
    return playground
