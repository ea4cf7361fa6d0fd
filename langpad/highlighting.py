# langpad/highlighting.py
"""
Highlighting rules for the two editors.

Sample languages get a pygments lexer generated from their grammar on every
regeneration; the grammar language itself uses the static ``GrammarLexer``.
"""

import logging
import re
from typing import List, Tuple, Type

from pygments.lexer import RegexLexer, words
from pygments.token import Comment, Keyword, Name, Number, Operator, Punctuation, String, Text, Whitespace

from .grammar import Grammar, TerminalRule

logger = logging.getLogger(__name__)

_WORD_KEYWORD = re.compile(r"^\w+$")


def _terminal_token(terminal: TerminalRule):
    if terminal.hidden:
        return Whitespace if terminal.regex.match(" ") else Comment
    if terminal.returns == "number":
        return Number
    if "STRING" in terminal.name.upper():
        return String
    return Name


def generate_highlighting(grammar: Grammar, session_id: int) -> Type[RegexLexer]:
    """
    Builds a pygments lexer class for the language ``grammar`` describes.

    Hidden terminals come first, then keywords (longest first, so ``<=``
    wins over ``<``), then the remaining terminals. Anything left over is
    lexed as plain text, so the lexer never produces error tokens.
    """
    rules: List[Tuple] = []
    terminals = [t for t in grammar.terminals.values() if t.regex is not None]

    for terminal in terminals:
        if terminal.hidden:
            rules.append((terminal.pattern, _terminal_token(terminal)))

    keywords = sorted(grammar.keywords(), key=len, reverse=True)
    word_keywords = [k for k in keywords if _WORD_KEYWORD.match(k)]
    symbol_keywords = [k for k in keywords if not _WORD_KEYWORD.match(k)]
    if word_keywords:
        rules.append((words(word_keywords, prefix=r"\b", suffix=r"\b"), Keyword))
    if symbol_keywords:
        rules.append((words(symbol_keywords), Punctuation))

    for terminal in terminals:
        if not terminal.hidden:
            rules.append((terminal.pattern, _terminal_token(terminal)))

    rules.extend([(r"\s+", Whitespace), (r".", Text)])

    language_id = str(session_id)
    class_name = f"{grammar.name or 'Sample'}Lexer{session_id}"
    lexer_cls = type(class_name, (RegexLexer,), {
        "name": f"{grammar.name or 'Sample'} (session {session_id})",
        "aliases": [language_id],
        "filenames": [],
        "tokens": {"root": rules},
    })
    logger.debug("Generated lexer %s with %d rules", class_name, len(rules))
    return lexer_cls


class GrammarLexer(RegexLexer):
    """Lexer for the grammar language edited in the definition pane."""

    name = "Langpad Grammar"
    aliases = ["langpad-grammar"]
    filenames = ["*.langium", "*.grammar"]

    tokens = {
        "root": [
            (r"/\*[\s\S]*?\*/", Comment.Multiline),
            (r"//[^\n\r]*", Comment.Single),
            (r"\s+", Whitespace),
            (words(("grammar", "entry", "hidden", "terminal", "returns"), prefix=r"\b", suffix=r"\b"),
             Keyword),
            (r"'(?:\\.|[^'\\\n])*'|\"(?:\\.|[^\"\\\n])*\"", String),
            (r"/(?:\\.|[^/\\\n])+/", String.Regex),
            (r"\+=|\?=|=", Operator),
            (r"[?*+|]", Operator),
            (r"[:;()\[\]]", Punctuation),
            (r"[_a-zA-Z]\w*", Name),
            (r".", Text),
        ],
    }
