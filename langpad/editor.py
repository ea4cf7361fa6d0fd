# langpad/editor.py
"""Editor surfaces and the text models attached to them."""

import logging
from typing import Callable, List, Optional, Tuple, Type

from pygments import lex
from pygments.lexer import Lexer
from pygments.lexers.special import TextLexer

from .disposable import Disposable
from .errors import SessionError

logger = logging.getLogger(__name__)

ChangeListener = Callable[["EditorModel"], None]


class EditorModel:
    """
    The text buffer a language client is attached to.

    Each model has its own URI and language id; a sample session gets a
    brand-new model on every regeneration so two sessions never share one.
    """

    def __init__(self, uri: str, language_id: str, text: str = "",
                 lexer_cls: Optional[Type[Lexer]] = None):
        self.uri = uri
        self.language_id = language_id
        self.version = 1
        self.lexer_cls = lexer_cls or TextLexer
        self._text = text
        self._listeners: List[ChangeListener] = []
        self.disposed = False

    def get_value(self) -> str:
        return self._text

    def set_value(self, text: str) -> None:
        if self.disposed:
            raise SessionError(f"Model {self.uri} has been disposed")
        if text == self._text:
            return
        self._text = text
        self.version += 1
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Change listener for %s failed", self.uri)

    def on_did_change(self, listener: ChangeListener) -> Disposable:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Disposable(_remove)

    def highlight(self) -> List[Tuple[object, str]]:
        """Tokenizes the current text with the model's highlighting rules."""
        return list(lex(self._text, self.lexer_cls()))

    def dispose(self) -> None:
        self.disposed = True
        self._listeners.clear()

    def __repr__(self) -> str:
        return f"<EditorModel {self.uri} v{self.version}>"


class EditorView:
    """
    A named editor surface (the definition pane or the sample pane).

    The view holds whichever model is currently attached and records layout
    refreshes triggered by resize events.
    """

    def __init__(self, name: str, scheme: str = "inmemory"):
        self.name = name
        self.scheme = scheme
        self.model: Optional[EditorModel] = None
        self.size: Optional[Tuple[int, int]] = None
        self.layout_updates = 0
        self.closed = False

    def attach(self, language_id: str, code: str,
               lexer_cls: Optional[Type[Lexer]] = None) -> EditorModel:
        """Creates a fresh model for ``language_id`` and makes it the view's model."""
        if self.closed:
            raise SessionError(f"Editor view {self.name!r} is closed")
        uri = f"{self.scheme}://{self.name}/{language_id}"
        self.model = EditorModel(uri, language_id, code, lexer_cls)
        logger.debug("Attached %r to view %r", self.model, self.name)
        return self.model

    def update_layout(self, size: Optional[Tuple[int, int]] = None) -> None:
        if size is not None:
            self.size = size
        self.layout_updates += 1

    def close(self) -> None:
        self.closed = True
        if self.model is not None:
            self.model.dispose()
