# langpad/grammar.py
"""
Parser and validator for the playground's grammar language.

A grammar is a list of parser rules and terminal rules::

    grammar HelloWorld

    entry Model:
        (persons+=Person | greetings+=Greeting)*;

    Person:
        'person' name=ID;

    Greeting:
        'Hello' person=[Person:ID] '!';

    hidden terminal WS: /\\s+/;
    terminal ID: /[_a-zA-Z][\\w_]*/;

Parser rule bodies support keywords, rule calls, groups, alternatives,
the ``? * +`` cardinalities, ``= += ?=`` assignments and cross-references
``[Type:TERMINAL]``. :func:`parse_grammar` never raises: every problem
in the text comes back as an LSP diagnostic.
"""

import bisect
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Pattern, Set, Tuple, Union

from lsprotocol import types as lsp

DIAGNOSTIC_SOURCE = "langpad"
STATEMENT_KEYWORDS = ("entry", "hidden", "terminal")
ASSIGNMENT_OPERATORS = ("=", "+=", "?=")
CARDINALITIES = ("?", "*", "+")


class LineIndex:
    """Maps character offsets in a text to LSP line/character positions."""

    def __init__(self, text: str):
        self._starts = [0] + [m.end() for m in re.finditer(r"\r\n|\r|\n", text)]
        self._length = len(text)

    def position(self, offset: int) -> lsp.Position:
        offset = max(0, min(offset, self._length))
        line = bisect.bisect_right(self._starts, offset) - 1
        return lsp.Position(line=line, character=offset - self._starts[line])

    def range(self, start: int, end: int) -> lsp.Range:
        return lsp.Range(start=self.position(start), end=self.position(max(start, end)))


def make_diagnostic(index: LineIndex, span: Tuple[int, int], message: str,
                    severity: lsp.DiagnosticSeverity = lsp.DiagnosticSeverity.Error,
                    code: Optional[str] = None) -> lsp.Diagnostic:
    return lsp.Diagnostic(
        range=index.range(*span),
        message=message,
        severity=severity,
        code=code,
        source=DIAGNOSTIC_SOURCE,
    )


# ---------------------------------------------------------------------------
# Grammar model
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class Keyword:
    value: str
    span: Tuple[int, int] = (0, 0)
    cardinality: Optional[str] = None


@dataclass(eq=False)
class RuleCall:
    name: str
    span: Tuple[int, int] = (0, 0)
    cardinality: Optional[str] = None


@dataclass(eq=False)
class CrossReference:
    type_name: str
    terminal: str = "ID"
    span: Tuple[int, int] = (0, 0)
    cardinality: Optional[str] = None


@dataclass(eq=False)
class Assignment:
    feature: str
    operator: str
    terminal: "Element"
    span: Tuple[int, int] = (0, 0)
    cardinality: Optional[str] = None


@dataclass(eq=False)
class Group:
    elements: List["Element"]
    span: Tuple[int, int] = (0, 0)
    cardinality: Optional[str] = None


@dataclass(eq=False)
class Alternatives:
    elements: List["Element"]
    span: Tuple[int, int] = (0, 0)
    cardinality: Optional[str] = None


Element = Union[Keyword, RuleCall, CrossReference, Assignment, Group, Alternatives]


@dataclass(eq=False)
class ParserRule:
    name: str
    body: Element
    entry: bool = False
    returns: Optional[str] = None
    span: Tuple[int, int] = (0, 0)

    @property
    def type_name(self) -> str:
        return self.returns or self.name


@dataclass(eq=False)
class TerminalRule:
    name: str
    pattern: str
    hidden: bool = False
    returns: Optional[str] = None
    span: Tuple[int, int] = (0, 0)
    pattern_span: Tuple[int, int] = (0, 0)
    regex: Optional[Pattern] = None


@dataclass(eq=False)
class Grammar:
    name: str = ""
    name_span: Tuple[int, int] = (0, 0)
    parser_rules: Dict[str, ParserRule] = field(default_factory=dict)
    terminals: Dict[str, TerminalRule] = field(default_factory=dict)

    @property
    def entry_rule(self) -> Optional[ParserRule]:
        for rule in self.parser_rules.values():
            if rule.entry:
                return rule
        return None

    def rule(self, name: str) -> Union[ParserRule, TerminalRule, None]:
        return self.parser_rules.get(name) or self.terminals.get(name)

    def hidden_terminals(self) -> List[TerminalRule]:
        return [t for t in self.terminals.values() if t.hidden]

    def keywords(self) -> List[str]:
        """All keyword literals in declaration order, without duplicates."""
        seen: Dict[str, None] = {}
        for rule in self.parser_rules.values():
            for element in iter_elements(rule.body):
                if isinstance(element, Keyword):
                    seen.setdefault(element.value, None)
        return list(seen)


def iter_elements(element: Element) -> Iterator[Element]:
    """Yields ``element`` and every element nested inside it, depth first."""
    yield element
    if isinstance(element, Assignment):
        yield from iter_elements(element.terminal)
    elif isinstance(element, (Group, Alternatives)):
        for child in element.elements:
            yield from iter_elements(child)


@dataclass
class GrammarResult:
    grammar: Grammar
    diagnostics: List[lsp.Diagnostic] = field(default_factory=list)

    @property
    def errors(self) -> List[lsp.Diagnostic]:
        return [d for d in self.diagnostics if d.severity == lsp.DiagnosticSeverity.Error]

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

_TOKEN_SPEC = [
    ("ML_COMMENT", r"/\*[\s\S]*?\*/"),
    ("SL_COMMENT", r"//[^\n\r]*"),
    ("WS", r"\s+"),
    ("STRING", r"'(?:\\.|[^'\\\n])*'|\"(?:\\.|[^\"\\\n])*\""),
    ("REGEX", r"/(?:\\.|[^/\\\n])+/"),
    ("ID", r"[_a-zA-Z]\w*"),
    ("OP", r"\+=|\?=|[:;|()*+?=\[\]]"),
]
_TOKEN_RE = re.compile("|".join(f"(?P<{name}>{pattern})" for name, pattern in _TOKEN_SPEC))
_SKIPPED = ("WS", "ML_COMMENT", "SL_COMMENT")


@dataclass
class Token:
    kind: str
    value: str
    start: int
    end: int


def tokenize(text: str) -> Tuple[List[Token], List[Tuple[int, int, str]]]:
    """Splits grammar text into tokens; unknown characters are returned as errors."""
    tokens: List[Token] = []
    errors: List[Tuple[int, int, str]] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            errors.append((pos, pos + 1, f"Unexpected character {text[pos]!r}."))
            pos += 1
            continue
        if match.lastgroup not in _SKIPPED:
            tokens.append(Token(match.lastgroup, match.group(), match.start(), match.end()))
        pos = match.end()
    tokens.append(Token("EOF", "", len(text), len(text)))
    return tokens, errors


def _unquote(literal: str) -> str:
    return re.sub(r"\\(.)", r"\1", literal[1:-1])


def _describe(token: Token) -> str:
    return "end of file" if token.kind == "EOF" else repr(token.value)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class _SyntaxError(Exception):
    def __init__(self, token: Token, message: str):
        super().__init__(message)
        self.token = token
        self.message = message


class _GrammarParser:
    def __init__(self, text: str):
        self.index = LineIndex(text)
        self.tokens, lex_errors = tokenize(text)
        self.pos = 0
        self.grammar = Grammar()
        self.diagnostics: List[lsp.Diagnostic] = []
        for start, end, message in lex_errors:
            self._error((start, end), message, code="lexer")

    # --- token helpers ---

    def _peek(self, offset: int = 0) -> Token:
        return self.tokens[min(self.pos + offset, len(self.tokens) - 1)]

    def _next(self) -> Token:
        token = self._peek()
        if token.kind != "EOF":
            self.pos += 1
        return token

    def _at(self, kind: str, value: Optional[str] = None, offset: int = 0) -> bool:
        token = self._peek(offset)
        return token.kind == kind and (value is None or token.value == value)

    def _accept(self, kind: str, value: Optional[str] = None) -> Optional[Token]:
        if self._at(kind, value):
            return self._next()
        return None

    def _expect(self, kind: str, value: Optional[str] = None, what: Optional[str] = None) -> Token:
        token = self._accept(kind, value)
        if token is None:
            found = self._peek()
            raise _SyntaxError(found, f"Expecting {what or repr(value)} but found {_describe(found)}.")
        return token

    def _at_statement_keyword(self, word: str) -> bool:
        return self._at("ID", word) and self._at("ID", offset=1)

    def _at_statement_start(self) -> bool:
        if self._at("ID") and self._at("OP", ":", offset=1):
            return True
        return any(self._at_statement_keyword(word) for word in STATEMENT_KEYWORDS)

    def _error(self, span: Tuple[int, int], message: str, code: str = "syntax") -> None:
        self.diagnostics.append(make_diagnostic(self.index, span, message, code=code))

    # --- statements ---

    def parse(self) -> Grammar:
        if self._at("ID", "grammar") and self._at("ID", offset=1):
            self._next()
            name = self._next()
            self.grammar.name = name.value
            self.grammar.name_span = (name.start, name.end)
        else:
            first = self._peek()
            self._error((first.start, first.end), "A grammar must start with 'grammar <Name>'.")

        while not self._at("EOF"):
            before = self.pos
            try:
                self._statement()
            except _SyntaxError as exc:
                self._error((exc.token.start, exc.token.end), exc.message)
                self._recover()
            if self.pos == before:
                self._next()
        return self.grammar

    def _recover(self) -> None:
        while not self._at("EOF"):
            if self._at_statement_start():
                return
            if self._next().value == ";":
                return

    def _statement(self) -> None:
        if self._at_statement_keyword("hidden"):
            self._next()
            self._expect("ID", "terminal", "'terminal'")
            self._terminal_rule(hidden=True)
        elif self._at_statement_keyword("terminal"):
            self._next()
            self._terminal_rule(hidden=False)
        else:
            entry = False
            if self._at_statement_keyword("entry"):
                self._next()
                entry = True
            self._parser_rule(entry)

    def _returns(self) -> Optional[str]:
        if self._accept("ID", "returns"):
            return self._expect("ID", what="a type name").value
        return None

    def _terminal_rule(self, hidden: bool) -> None:
        name = self._expect("ID", what="a terminal name")
        returns = self._returns()
        self._expect("OP", ":")
        regex = self._expect("REGEX", what="a regular expression")
        self._expect("OP", ";")
        self._register(TerminalRule(
            name=name.value,
            pattern=regex.value[1:-1],
            hidden=hidden,
            returns=returns,
            span=(name.start, name.end),
            pattern_span=(regex.start, regex.end),
        ))

    def _parser_rule(self, entry: bool) -> None:
        name = self._expect("ID", what="a rule name")
        returns = self._returns()
        self._expect("OP", ":")
        body = self._alternatives()
        self._expect("OP", ";")
        self._register(ParserRule(
            name=name.value,
            body=body,
            entry=entry,
            returns=returns,
            span=(name.start, name.end),
        ))

    def _register(self, rule: Union[ParserRule, TerminalRule]) -> None:
        if self.grammar.rule(rule.name) is not None:
            self._error(rule.span, f"A rule's name has to be unique. '{rule.name}' is declared twice.",
                        code="duplicate-rule")
            return
        if isinstance(rule, TerminalRule):
            self.grammar.terminals[rule.name] = rule
        else:
            self.grammar.parser_rules[rule.name] = rule

    # --- rule bodies ---

    def _alternatives(self) -> Element:
        items = [self._group()]
        while self._accept("OP", "|"):
            items.append(self._group())
        if len(items) == 1:
            return items[0]
        return Alternatives(items, span=(items[0].span[0], items[-1].span[1]))

    def _starts_element(self) -> bool:
        if self._at("STRING") or self._at("OP", "(") or self._at("OP", "["):
            return True
        return self._at("ID") and not self._at_statement_start()

    def _group(self) -> Element:
        elements: List[Element] = []
        while self._starts_element():
            elements.append(self._element())
        if not elements:
            found = self._peek()
            raise _SyntaxError(found, f"Expecting a rule element but found {_describe(found)}.")
        if len(elements) == 1:
            return elements[0]
        return Group(elements, span=(elements[0].span[0], elements[-1].span[1]))

    def _element(self) -> Element:
        token = self._peek()
        element: Element
        if token.kind == "STRING":
            element = self._keyword()
        elif self._at("OP", "("):
            element = self._parenthesized()
        elif self._at("OP", "["):
            element = self._cross_reference()
            self._error(element.span, "Cross-references must be assigned to a property.", code="unassigned-reference")
        elif self._at("OP", offset=1) and self._peek(1).value in ASSIGNMENT_OPERATORS:
            feature = self._next()
            operator = self._next().value
            terminal = self._assignable()
            element = Assignment(feature.value, operator, terminal, span=(feature.start, terminal.span[1]))
        else:
            self._next()
            element = RuleCall(token.value, span=(token.start, token.end))

        if self._at("OP") and self._peek().value in CARDINALITIES:
            element.cardinality = self._next().value
        return element

    def _keyword(self) -> Keyword:
        token = self._next()
        value = _unquote(token.value)
        if not value:
            self._error((token.start, token.end), "Keywords cannot be empty.", code="empty-keyword")
        return Keyword(value, span=(token.start, token.end))

    def _parenthesized(self) -> Element:
        opening = self._expect("OP", "(")
        inner = self._alternatives()
        closing = self._expect("OP", ")")
        if inner.cardinality is not None:
            inner = Group([inner], span=(opening.start, closing.end))
        return inner

    def _cross_reference(self) -> CrossReference:
        opening = self._expect("OP", "[")
        type_name = self._expect("ID", what="a type name")
        terminal = "ID"
        if self._accept("OP", ":") or self._accept("OP", "|"):
            terminal = self._expect("ID", what="a terminal name").value
        closing = self._expect("OP", "]")
        return CrossReference(type_name.value, terminal, span=(opening.start, closing.end))

    def _assignable(self) -> Element:
        token = self._peek()
        if token.kind == "STRING":
            return self._keyword()
        if self._at("OP", "["):
            return self._cross_reference()
        if self._at("OP", "("):
            inner = self._parenthesized()
            for element in iter_elements(inner):
                if isinstance(element, Assignment):
                    self._error(element.span, "Assignments cannot be nested inside an assigned group.",
                                code="nested-assignment")
            return inner
        if token.kind == "ID" and not self._at_statement_start():
            self._next()
            return RuleCall(token.value, span=(token.start, token.end))
        raise _SyntaxError(token, f"Expecting a keyword, rule call or cross-reference but found {_describe(token)}.")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class _Validator:
    def __init__(self, grammar: Grammar, index: LineIndex, diagnostics: List[lsp.Diagnostic]):
        self.grammar = grammar
        self.index = index
        self.diagnostics = diagnostics
        self.nullable_rules: Set[str] = set()

    def _report(self, span: Tuple[int, int], message: str, code: str,
                severity: lsp.DiagnosticSeverity = lsp.DiagnosticSeverity.Error) -> None:
        self.diagnostics.append(make_diagnostic(self.index, span, message, severity, code))

    def validate(self) -> None:
        self._check_entry()
        self._check_terminals()
        referenced = self._check_references()
        self._check_unused(referenced)
        self._check_left_recursion()

    def _check_entry(self) -> None:
        entries = [rule for rule in self.grammar.parser_rules.values() if rule.entry]
        if not entries:
            self._report(self.grammar.name_span,
                         "The entry rule is missing: mark exactly one parser rule with 'entry'.",
                         code="missing-entry")
        for extra in entries[1:]:
            self._report(extra.span, "Only one entry rule is allowed per grammar.", code="multiple-entries")

    def _check_terminals(self) -> None:
        for terminal in self.grammar.terminals.values():
            try:
                regex = re.compile(terminal.pattern)
            except re.error as exc:
                self._report(terminal.pattern_span, f"Invalid regular expression: {exc}.", code="invalid-regex")
                continue
            if regex.match(""):
                self._report(terminal.span, f"Terminal rule '{terminal.name}' matches the empty string.",
                             code="empty-terminal")
                continue
            terminal.regex = regex

    def _parser_types(self) -> Set[str]:
        return {rule.type_name for rule in self.grammar.parser_rules.values()}

    def _check_references(self) -> Set[str]:
        referenced: Set[str] = set()
        parser_types = self._parser_types()
        for rule in self.grammar.parser_rules.values():
            for element in iter_elements(rule.body):
                if isinstance(element, RuleCall):
                    if self.grammar.rule(element.name) is None:
                        self._report(element.span,
                                     f"Could not resolve reference to AbstractRule named '{element.name}'.",
                                     code="unresolved-rule")
                    referenced.add(element.name)
                elif isinstance(element, CrossReference):
                    if element.type_name not in parser_types:
                        self._report(element.span,
                                     f"Could not resolve reference to type '{element.type_name}'.",
                                     code="unresolved-type")
                    if element.terminal not in self.grammar.terminals:
                        self._report(element.span,
                                     f"Cross-reference terminal '{element.terminal}' must be a terminal rule.",
                                     code="invalid-reference-terminal")
                    referenced.add(element.terminal)
                    referenced.update(r.name for r in self.grammar.parser_rules.values()
                                      if r.type_name == element.type_name)
        return referenced

    def _check_unused(self, referenced: Set[str]) -> None:
        for rule in self.grammar.parser_rules.values():
            if not rule.entry and rule.name not in referenced:
                self._report(rule.span, "This rule is declared but never referenced.",
                             code="unused-rule", severity=lsp.DiagnosticSeverity.Warning)
        for terminal in self.grammar.terminals.values():
            if not terminal.hidden and terminal.name not in referenced:
                self._report(terminal.span, "This rule is declared but never referenced.",
                             code="unused-rule", severity=lsp.DiagnosticSeverity.Warning)

    # --- left recursion ---

    def _nullable(self, element: Element) -> bool:
        if element.cardinality in ("?", "*"):
            return True
        if isinstance(element, RuleCall):
            return element.name in self.nullable_rules
        if isinstance(element, Assignment):
            return self._nullable(element.terminal)
        if isinstance(element, Group):
            return all(self._nullable(child) for child in element.elements)
        if isinstance(element, Alternatives):
            return any(self._nullable(child) for child in element.elements)
        return False

    def _left_calls(self, element: Element) -> Set[str]:
        if isinstance(element, RuleCall):
            return {element.name} if element.name in self.grammar.parser_rules else set()
        if isinstance(element, Assignment):
            return self._left_calls(element.terminal)
        if isinstance(element, Alternatives):
            calls: Set[str] = set()
            for child in element.elements:
                calls |= self._left_calls(child)
            return calls
        if isinstance(element, Group):
            calls = set()
            for child in element.elements:
                calls |= self._left_calls(child)
                if not self._nullable(child):
                    break
            return calls
        return set()

    def _check_left_recursion(self) -> None:
        changed = True
        while changed:
            changed = False
            for rule in self.grammar.parser_rules.values():
                if rule.name not in self.nullable_rules and self._nullable(rule.body):
                    self.nullable_rules.add(rule.name)
                    changed = True

        graph = {name: self._left_calls(rule.body) for name, rule in self.grammar.parser_rules.items()}
        for name, rule in self.grammar.parser_rules.items():
            stack = list(graph[name])
            seen: Set[str] = set()
            while stack:
                current = stack.pop()
                if current == name:
                    self._report(rule.span,
                                 f"Rule '{name}' is left-recursive; left recursion is not supported.",
                                 code="left-recursion")
                    break
                if current in seen:
                    continue
                seen.add(current)
                stack.extend(graph.get(current, ()))


def parse_grammar(text: str) -> GrammarResult:
    """Parses and validates grammar text. Never raises."""
    parser = _GrammarParser(text)
    grammar = parser.parse()
    _Validator(grammar, parser.index, parser.diagnostics).validate()
    return GrammarResult(grammar, parser.diagnostics)
