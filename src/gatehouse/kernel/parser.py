"""
Parser for Polar policy source.

Turns source text into rules and inline queries. The grammar is the
subset of Polar the kernel evaluates:

    program    := (statement ";")*
    statement  := "?=" expr | head ((":=" | "if") expr)?
    head       := NAME "(" (param ("," param)*)? ")"
    param      := term (":" specializer)?
    expr       := and_expr (("|" | "or") and_expr)*
    and_expr   := not_expr (("," | "and") not_expr)*
    not_expr   := ("!" | "not") not_expr | comparison
    comparison := term (OP term | "isa" specializer)?
    term       := primary ("." NAME ("(" args ")")?)*

Parse failures raise PolicyParseError with the line and column of the
offending token.
"""

import re
from dataclasses import dataclass
from itertools import count
from typing import Any

from gatehouse.errors import PolicyParseError
from gatehouse.kernel.terms import (
    Call,
    Expression,
    InstanceLiteral,
    Operator,
    Parameter,
    Pattern,
    RestList,
    Rule,
    Variable,
)

TOKEN_SPEC = [
    ("WS", r"[ \t\r\n]+"),
    ("COMMENT", r"#[^\n]*"),
    ("FLOAT", r"\d+\.\d+(?:[eE][+-]?\d+)?"),
    ("INT", r"\d+"),
    ("STRING", r'"(?:[^"\\]|\\.)*"'),
    ("NAME", r"[A-Za-z_][A-Za-z0-9_]*(?:::[A-Za-z_][A-Za-z0-9_]*)*"),
    ("OP", r":=|\?=|==|!=|<=|>=|[-<>=!|,;:.()\[\]{}*]"),
]

_TOKEN_RE = re.compile("|".join(f"(?P<{name}>{pattern})" for name, pattern in TOKEN_SPEC))

KEYWORDS = frozenset({"if", "and", "or", "not", "isa", "in", "new", "true", "false", "nil"})

_COMPARISON_OPS = {
    "=": Operator.UNIFY,
    "==": Operator.EQ,
    "!=": Operator.NEQ,
    "<": Operator.LT,
    "<=": Operator.LEQ,
    ">": Operator.GT,
    ">=": Operator.GEQ,
}

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\"}


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    line: int
    column: int


@dataclass(frozen=True)
class InlineQuery:
    """A ``?= goal;`` statement and its source text."""

    goal: Any
    text: str
    source_id: str | None = None


@dataclass
class ParsedSource:
    """Everything a single source contributes to the knowledge base."""

    rules: list[Rule]
    inline_queries: list[InlineQuery]


def tokenize(text: str, source_id: str | None = None) -> list[Token]:
    """Split source text into tokens, dropping whitespace and comments."""
    tokens: list[Token] = []
    pos = 0
    line = 1
    line_start = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise PolicyParseError(
                source_id=source_id or "",
                line=line,
                column=pos - line_start + 1,
                detail=f"unexpected character {text[pos]!r}",
            )
        kind = match.lastgroup or ""
        value = match.group()
        if kind not in ("WS", "COMMENT"):
            if kind == "NAME" and value in KEYWORDS:
                kind = "KEYWORD"
            tokens.append(Token(kind, value, line, pos - line_start + 1))
        newlines = value.count("\n")
        if newlines:
            line += newlines
            line_start = pos + value.rindex("\n") + 1
        pos = match.end()
    tokens.append(Token("EOF", "", line, pos - line_start + 1))
    return tokens


class Parser:
    """
    Recursive-descent parser over a token list.

    Anonymous variables (``_``) are renamed to ``_1``, ``_2``... so that
    each occurrence is a distinct variable.
    """

    def __init__(self, text: str, source_id: str | None = None) -> None:
        self.text = text
        self.source_id = source_id
        self.tokens = tokenize(text, source_id)
        self.pos = 0
        self._anonymous = count(1)

    # =========================================================================
    # Entry points
    # =========================================================================

    def parse_source(self) -> ParsedSource:
        rules: list[Rule] = []
        inline_queries: list[InlineQuery] = []
        while self._peek().kind != "EOF":
            if self._accept("OP", "?="):
                start = self._peek()
                goal = self.parse_expr()
                end = self._expect("OP", ";")
                text = self._slice(start, end)
                inline_queries.append(InlineQuery(goal, text, self.source_id))
            else:
                rules.append(self._parse_rule())
                self._expect("OP", ";")
        return ParsedSource(rules, inline_queries)

    def parse_query(self) -> Any:
        goal = self.parse_expr()
        self._accept("OP", ";")
        if self._peek().kind != "EOF":
            self._error("unexpected input after query")
        return goal

    # =========================================================================
    # Rules
    # =========================================================================

    def _parse_rule(self) -> Rule:
        name = self._expect("NAME").value
        self._expect("OP", "(")
        params: list[Parameter] = []
        if not self._accept("OP", ")"):
            while True:
                params.append(self._parse_param())
                if self._accept("OP", ")"):
                    break
                self._expect("OP", ",")
        body: Any = True
        if self._accept("OP", ":=") or self._accept("KEYWORD", "if"):
            body = self.parse_expr()
        return Rule(name, tuple(params), body, self.source_id)

    def _parse_param(self) -> Parameter:
        term = self.parse_term()
        if self._accept("OP", ":"):
            return Parameter(term, self._parse_specializer())
        if isinstance(term, dict):
            # A bare dict in head position matches any dict or instance
            # that has at least these fields.
            return Parameter(Variable(f"_{next(self._anonymous)}"), Pattern(None, term))
        return Parameter(term)

    def _parse_specializer(self) -> Any:
        token = self._peek()
        if token.kind == "NAME":
            self._advance()
            if self._peek().value == "{" and self._peek().kind == "OP":
                return Pattern(token.value, self._parse_dict())
            return Pattern(token.value)
        if token.kind == "OP" and token.value == "{":
            return Pattern(None, self._parse_dict())
        return self.parse_term()

    # =========================================================================
    # Expressions
    # =========================================================================

    def parse_expr(self) -> Any:
        parts = [self._parse_and()]
        while self._accept("OP", "|") or self._accept("KEYWORD", "or"):
            parts.append(self._parse_and())
        if len(parts) == 1:
            return parts[0]
        return Expression(Operator.OR, tuple(parts))

    def _parse_and(self) -> Any:
        parts = [self._parse_not()]
        while self._accept("OP", ",") or self._accept("KEYWORD", "and"):
            parts.append(self._parse_not())
        if len(parts) == 1:
            return parts[0]
        return Expression(Operator.AND, tuple(parts))

    def _parse_not(self) -> Any:
        if self._accept("OP", "!") or self._accept("KEYWORD", "not"):
            return Expression(Operator.NOT, (self._parse_not(),))
        return self._parse_comparison()

    def _parse_comparison(self) -> Any:
        left = self.parse_term()
        token = self._peek()
        if token.kind == "OP" and token.value in _COMPARISON_OPS:
            self._advance()
            right = self.parse_term()
            return Expression(_COMPARISON_OPS[token.value], (left, right))
        if token.kind == "KEYWORD" and token.value == "in":
            self._advance()
            return Expression(Operator.IN, (left, self.parse_term()))
        if token.kind == "KEYWORD" and token.value == "isa":
            self._advance()
            return Expression(Operator.ISA, (left, self._parse_specializer()))
        return left

    # =========================================================================
    # Terms
    # =========================================================================

    def parse_term(self) -> Any:
        term = self._parse_primary()
        while self._accept("OP", "."):
            name = self._expect("NAME").value
            call_args = None
            if self._accept("OP", "("):
                call_args = tuple(self._parse_args(")"))
            term = Expression(Operator.DOT, (term, name, call_args))
        return term

    def _parse_primary(self) -> Any:
        token = self._advance()
        if token.kind == "INT":
            return int(token.value)
        if token.kind == "FLOAT":
            return float(token.value)
        if token.kind == "STRING":
            return _unescape(token.value[1:-1])
        if token.kind == "KEYWORD":
            if token.value == "true":
                return True
            if token.value == "false":
                return False
            if token.value == "nil":
                return None
            if token.value == "new":
                tag = self._expect("NAME").value
                return Expression(Operator.NEW, (InstanceLiteral(tag, self._parse_dict()),))
        if token.kind == "OP":
            if token.value == "-":
                number = self._advance()
                if number.kind == "INT":
                    return -int(number.value)
                if number.kind == "FLOAT":
                    return -float(number.value)
                self._error("expected a number after '-'", number)
            if token.value == "(":
                expr = self.parse_expr()
                self._expect("OP", ")")
                return expr
            if token.value == "[":
                return self._parse_list()
            if token.value == "{":
                self.pos -= 1
                return self._parse_dict()
        if token.kind == "NAME":
            nxt = self._peek()
            if nxt.kind == "OP" and nxt.value == "(":
                self._advance()
                return Call(token.value, tuple(self._parse_args(")")))
            if nxt.kind == "OP" and nxt.value == "{":
                return InstanceLiteral(token.value, self._parse_dict())
            if token.value == "_":
                return Variable(f"_{next(self._anonymous)}")
            return Variable(token.value)
        self._error(f"unexpected token {token.value or 'end of input'!r}", token)

    def _parse_args(self, close: str) -> list[Any]:
        args: list[Any] = []
        if self._accept("OP", close):
            return args
        while True:
            args.append(self.parse_term())
            if self._accept("OP", close):
                return args
            self._expect("OP", ",")

    def _parse_list(self) -> Any:
        items: list[Any] = []
        if self._accept("OP", "]"):
            return items
        while True:
            if self._accept("OP", "*"):
                rest = self.parse_term()
                if not isinstance(rest, Variable):
                    self._error("list rest must be a variable")
                self._expect("OP", "]")
                return RestList(tuple(items), rest)
            items.append(self.parse_term())
            if self._accept("OP", "]"):
                return items
            self._expect("OP", ",")

    def _parse_dict(self) -> dict[str, Any]:
        self._expect("OP", "{")
        fields: dict[str, Any] = {}
        if self._accept("OP", "}"):
            return fields
        while True:
            key_token = self._advance()
            if key_token.kind in ("NAME", "KEYWORD"):
                key = key_token.value
            elif key_token.kind == "STRING":
                key = _unescape(key_token.value[1:-1])
            else:
                self._error("expected a field name", key_token)
            self._expect("OP", ":")
            if key in fields:
                self._error(f"duplicate field {key!r}", key_token)
            fields[key] = self.parse_term()
            if self._accept("OP", "}"):
                return fields
            self._expect("OP", ",")

    # =========================================================================
    # Token helpers
    # =========================================================================

    def _peek(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.kind != "EOF":
            self.pos += 1
        return token

    def _accept(self, kind: str, value: str | None = None) -> bool:
        token = self._peek()
        if token.kind == kind and (value is None or token.value == value):
            self.pos += 1
            return True
        return False

    def _expect(self, kind: str, value: str | None = None) -> Token:
        token = self._peek()
        if token.kind == kind and (value is None or token.value == value):
            self.pos += 1
            return token
        wanted = value or kind.lower()
        self._error(f"expected {wanted!r}, found {token.value or 'end of input'!r}", token)

    def _error(self, detail: str, token: Token | None = None) -> None:
        token = token or self._peek()
        raise PolicyParseError(
            source_id=self.source_id or "",
            line=token.line,
            column=token.column,
            detail=detail,
        )

    def _slice(self, start: Token, end: Token) -> str:
        lines = self.text.splitlines(keepends=True)
        offset_start = sum(len(l) for l in lines[: start.line - 1]) + start.column - 1
        offset_end = sum(len(l) for l in lines[: end.line - 1]) + end.column - 1
        return self.text[offset_start:offset_end].strip()


def _unescape(raw: str) -> str:
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), raw)


def parse_source(text: str, source_id: str | None = None) -> ParsedSource:
    """Parse a whole policy source into rules and inline queries."""
    return Parser(text, source_id).parse_source()


def parse_query(text: str) -> Any:
    """Parse a single query goal (a trailing ``;`` is allowed)."""
    return Parser(text).parse_query()
