# langpad/interpreter.py
"""
Grammar-driven parsing of sample programs.

:class:`SampleParser` interprets a validated :class:`~langpad.grammar.Grammar`
directly: ordered choice with backtracking, hidden terminals skipped between
tokens, no separate lexer. The result is a JSON-ready AST made of dicts
carrying a ``$type`` key, plus LSP diagnostics.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from lsprotocol import types as lsp

from .grammar import (
    Alternatives,
    Assignment,
    CrossReference,
    Element,
    Grammar,
    Group,
    Keyword,
    LineIndex,
    ParserRule,
    RuleCall,
    TerminalRule,
    make_diagnostic,
)
from .tree import AstNode, AstNodeLocator, is_reference

logger = logging.getLogger(__name__)

MAX_RULE_DEPTH = 500
_WORD_RE = re.compile(r"\w+$")
_FOUND_RE = re.compile(r"\w+|\S")


class _RecursionLimit(Exception):
    pass


@dataclass
class ParseResult:
    ast: AstNode
    diagnostics: List[lsp.Diagnostic] = field(default_factory=list)

    @property
    def errors(self) -> List[lsp.Diagnostic]:
        return [d for d in self.diagnostics if d.severity == lsp.DiagnosticSeverity.Error]


def _snapshot(node: AstNode) -> AstNode:
    return {key: list(value) if isinstance(value, list) else value for key, value in node.items()}


def _restore(node: AstNode, snapshot: AstNode) -> None:
    node.clear()
    node.update(snapshot)


class SampleParser:
    """Parses programs written in the language that ``grammar`` describes."""

    def __init__(self, grammar: Grammar):
        entry = grammar.entry_rule
        if entry is None:
            raise ValueError(f"Grammar {grammar.name!r} has no entry rule")
        self.grammar = grammar
        self.entry: ParserRule = entry
        self._hidden = [t.regex for t in grammar.hidden_terminals() if t.regex is not None]

    def parse(self, text: str) -> ParseResult:
        self._text = text
        self._furthest = -1
        self._expected: Set[str] = set()
        self._failed: Set[Tuple[str, int]] = set()
        self._spans: Dict[int, Tuple[int, int]] = {}
        self._depth = 0
        index = LineIndex(text)
        diagnostics: List[lsp.Diagnostic] = []

        try:
            result = self._call_rule(self.entry, 0)
        except _RecursionLimit:
            diagnostics.append(make_diagnostic(
                index, (0, len(text)), "The document is nested too deeply to be parsed.", code="parse-depth"))
            return ParseResult({"$type": self.entry.type_name}, diagnostics)

        if result is None:
            node, end = {"$type": self.entry.type_name}, 0
        else:
            node, end = result
        end = self._skip_hidden(end)
        if result is None or end < len(text):
            diagnostics.append(self._syntax_error(index, max(self._furthest, end)))

        diagnostics.extend(self._link(node, index))
        return ParseResult(node, diagnostics)

    # --- errors ---

    def _fail(self, pos: int, expected: str) -> None:
        if pos > self._furthest:
            self._furthest = pos
            self._expected = {expected}
        elif pos == self._furthest:
            self._expected.add(expected)

    def _syntax_error(self, index: LineIndex, pos: int) -> lsp.Diagnostic:
        match = _FOUND_RE.match(self._text, pos) if pos < len(self._text) else None
        found = f"'{match.group()}'" if match else "end of input"
        end = match.end() if match else pos
        expected = ", ".join(sorted(self._expected)) if pos == self._furthest and self._expected else "end of input"
        return make_diagnostic(index, (pos, end), f"Expecting {expected} but found {found}.", code="parse-error")

    # --- matching ---

    def _skip_hidden(self, pos: int) -> int:
        progressed = True
        while progressed and pos < len(self._text):
            progressed = False
            for regex in self._hidden:
                match = regex.match(self._text, pos)
                if match and match.end() > pos:
                    pos = match.end()
                    progressed = True
        return pos

    def _match(self, element: Element, pos: int, node: AstNode) -> Optional[int]:
        cardinality = element.cardinality
        if cardinality is None:
            return self._match_once(element, pos, node)
        if cardinality == "?":
            snapshot = _snapshot(node)
            end = self._match_once(element, pos, node)
            if end is None:
                _restore(node, snapshot)
                return pos
            return end

        count = 0
        while True:
            snapshot = _snapshot(node)
            end = self._match_once(element, pos, node)
            if end is None:
                _restore(node, snapshot)
                break
            count += 1
            if end == pos:
                break
            pos = end
        if cardinality == "+" and count == 0:
            return None
        return pos

    def _match_once(self, element: Element, pos: int, node: AstNode) -> Optional[int]:
        if isinstance(element, Keyword):
            return self._match_keyword(element, pos)
        if isinstance(element, RuleCall):
            rule = self.grammar.rule(element.name)
            if isinstance(rule, TerminalRule):
                matched = self._match_terminal(rule, pos)
                return matched[1] if matched else None
            result = self._call_rule(rule, pos)
            if result is None:
                return None
            child, end = result
            # Unassigned rule call: the called node becomes the current node.
            _restore(node, child)
            return end
        if isinstance(element, Assignment):
            return self._match_assignment(element, pos, node)
        if isinstance(element, Group):
            for child in element.elements:
                end = self._match(child, pos, node)
                if end is None:
                    return None
                pos = end
            return pos
        if isinstance(element, Alternatives):
            for child in element.elements:
                snapshot = _snapshot(node)
                end = self._match(child, pos, node)
                if end is not None:
                    return end
                _restore(node, snapshot)
            return None
        if isinstance(element, CrossReference):
            matched = self._match_reference(element, pos)
            return matched[1] if matched else None
        raise TypeError(f"Unknown grammar element {element!r}")

    def _match_keyword(self, keyword: Keyword, pos: int) -> Optional[int]:
        start = self._skip_hidden(pos)
        value = keyword.value
        end = start + len(value)
        if value and self._text.startswith(value, start):
            if not (_WORD_RE.match(value) and end < len(self._text)
                    and (self._text[end].isalnum() or self._text[end] == "_")):
                return end
        self._fail(start, f"'{value}'")
        return None

    def _match_terminal(self, terminal: TerminalRule, pos: int) -> Optional[Tuple[Any, int]]:
        start = self._skip_hidden(pos)
        match = terminal.regex.match(self._text, start) if terminal.regex is not None else None
        if match is None or match.end() == start:
            self._fail(start, terminal.name)
            return None
        return self._convert(terminal, match.group()), match.end()

    @staticmethod
    def _convert(terminal: TerminalRule, text: str) -> Any:
        if terminal.returns == "number":
            try:
                return int(text)
            except ValueError:
                return float(text)
        if terminal.returns == "boolean":
            return text == "true"
        return text

    def _match_reference(self, reference: CrossReference, pos: int) -> Optional[Tuple[Any, int]]:
        terminal = self.grammar.terminals.get(reference.terminal)
        if terminal is None:
            return None
        start = self._skip_hidden(pos)
        matched = self._match_terminal(terminal, start)
        if matched is None:
            return None
        text, end = matched
        value = {"$refText": str(text), "$refType": reference.type_name}
        self._spans[id(value)] = (start, end)
        return value, end

    def _match_assignment(self, assignment: Assignment, pos: int, node: AstNode) -> Optional[int]:
        matched = self._match_value(assignment.terminal, pos)
        if matched is None:
            return None
        value, end = matched
        if assignment.operator == "+=":
            node.setdefault(assignment.feature, []).append(value)
        elif assignment.operator == "?=":
            node[assignment.feature] = True
        else:
            node[assignment.feature] = value
        return end

    def _match_value(self, element: Element, pos: int) -> Optional[Tuple[Any, int]]:
        """Matches the right-hand side of an assignment and returns its value."""
        if isinstance(element, Keyword):
            end = self._match_keyword(element, pos)
            return (element.value, end) if end is not None else None
        if isinstance(element, CrossReference):
            return self._match_reference(element, pos)
        if isinstance(element, RuleCall):
            rule = self.grammar.rule(element.name)
            if isinstance(rule, TerminalRule):
                return self._match_terminal(rule, pos)
            return self._call_rule(rule, pos)
        if isinstance(element, Alternatives):
            for child in element.elements:
                matched = self._match_value(child, pos)
                if matched is not None:
                    return matched
            return None
        # Any other group yields the text it consumed.
        start = self._skip_hidden(pos)
        end = self._match(element, pos, {})
        return (self._text[start:end].strip(), end) if end is not None else None

    def _call_rule(self, rule: Optional[ParserRule], pos: int) -> Optional[Tuple[AstNode, int]]:
        if rule is None:
            return None
        key = (rule.name, pos)
        if key in self._failed:
            return None
        self._depth += 1
        if self._depth > MAX_RULE_DEPTH:
            raise _RecursionLimit()
        try:
            node: AstNode = {"$type": rule.type_name}
            end = self._match(rule.body, pos, node)
        finally:
            self._depth -= 1
        if end is None:
            self._failed.add(key)
            return None
        return node, end

    # --- linking ---

    def _link(self, root: AstNode, index: LineIndex) -> List[lsp.Diagnostic]:
        locator = AstNodeLocator()
        targets: Dict[Tuple[str, str], str] = {}
        for path, node in locator.walk(root):
            name = node.get("name")
            if isinstance(name, str):
                targets.setdefault((node["$type"], name), f"#{path}")

        diagnostics: List[lsp.Diagnostic] = []
        for _, node in locator.walk(root):
            for value in node.values():
                values = value if isinstance(value, list) else [value]
                for item in values:
                    if not is_reference(item):
                        continue
                    target = targets.get((item["$refType"], item["$refText"]))
                    if target is not None:
                        item["$ref"] = target
                        continue
                    span = self._spans.get(id(item), (0, 0))
                    diagnostics.append(make_diagnostic(
                        index, span,
                        f"Could not resolve reference to {item['$refType']} named '{item['$refText']}'.",
                        code="linking-error",
                    ))
        return diagnostics


def parse_sample(grammar: Grammar, text: str) -> ParseResult:
    return SampleParser(grammar).parse(text)
