"""
Term representation for the Gatehouse kernel.

Terms are the values the rule evaluator works with. Primitive terms are
plain Python values; compound terms are frozen dataclasses:

    - None, bool, int, float, str: primitives (``nil``, ``true``, ...)
    - list: a list of terms
    - dict: a string-keyed mapping of terms
    - Variable: a logic variable
    - Call: a predicate application or method call ``name(args)``
    - Expression: an operator applied to terms (``a = b``, ``x.y``, ...)
    - RestList: a list pattern with a ``*rest`` tail
    - InstanceLiteral: ``Class{field: value}``, constructed at query time
    - Pattern: a specializer, ``x: Class{field: value}``
    - ExternalInstance: an opaque handle to a host object

Bindings are plain dicts from Variable to term. They are never mutated in
place; binding a variable produces a new dict so that generators higher up
the search can keep their own view.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

Bindings = dict["Variable", Any]


class Operator(str, Enum):
    """Operators that can appear in an Expression."""

    AND = "and"
    OR = "or"
    NOT = "not"
    UNIFY = "="
    EQ = "=="
    NEQ = "!="
    LT = "<"
    LEQ = "<="
    GT = ">"
    GEQ = ">="
    IN = "in"
    ISA = "isa"
    DOT = "."
    NEW = "new"


COMPARISONS = frozenset({
    Operator.EQ,
    Operator.NEQ,
    Operator.LT,
    Operator.LEQ,
    Operator.GT,
    Operator.GEQ,
})


@dataclass(frozen=True)
class Variable:
    """A logic variable. Rule variables are renamed apart with a numeric suffix."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Call:
    """A predicate application ``name(arg, ...)``."""

    name: str
    args: tuple[Any, ...] = ()

    def __str__(self) -> str:
        return f"{self.name}({', '.join(to_polar(a) for a in self.args)})"


@dataclass(frozen=True)
class Expression:
    """
    An operator applied to arguments.

    For ``Operator.DOT`` the arguments are ``(target, field, call_args)``
    where ``call_args`` is None for a plain attribute read and a tuple of
    terms for a method call.
    """

    operator: Operator
    args: tuple[Any, ...] = ()

    def __str__(self) -> str:
        return to_polar(self)


@dataclass(frozen=True)
class RestList:
    """A list pattern ``[a, b, *rest]``."""

    items: tuple[Any, ...]
    rest: Variable


@dataclass(frozen=True)
class InstanceLiteral:
    """``Tag{field: value}``; becomes a host instance when evaluated."""

    tag: str
    fields: dict[str, Any] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class Pattern:
    """
    A specializer. ``tag`` names a class (or is None for a bare dict
    pattern) and ``fields`` holds nested patterns to match field by field.
    """

    tag: str | None = None
    fields: dict[str, Any] | None = field(default=None, hash=False)


@dataclass(frozen=True)
class ExternalInstance:
    """Opaque handle to a host object, valid inside one evaluation context."""

    instance_id: int
    repr: str | None = field(default=None, compare=False)

    def __str__(self) -> str:
        return self.repr or f"^{{id: {self.instance_id}}}"


@dataclass(frozen=True)
class Parameter:
    """One rule head parameter, with an optional specializer."""

    term: Any
    specializer: Any = None


@dataclass(frozen=True)
class Rule:
    """A fact (body is True) or rule ``name(params) := body``."""

    name: str
    params: tuple[Parameter, ...]
    body: Any = True
    source_id: str | None = None

    def __str__(self) -> str:
        params = []
        for param in self.params:
            text = to_polar(param.term)
            if param.specializer is not None:
                text += f": {to_polar(param.specializer)}"
            params.append(text)
        head = f"{self.name}({', '.join(params)})"
        if self.body is True:
            return f"{head};"
        return f"{head} := {to_polar(self.body)};"


def walk(term: Any, bindings: Bindings) -> Any:
    """Follow variable bindings until reaching a non-variable or unbound variable."""
    while isinstance(term, Variable) and term in bindings:
        term = bindings[term]
    return term


def substitute(term: Any, bindings: Bindings) -> Any:
    """Replace every bound variable inside ``term`` with its value."""
    term = walk(term, bindings)
    if isinstance(term, list):
        return [substitute(t, bindings) for t in term]
    if isinstance(term, dict):
        return {k: substitute(v, bindings) for k, v in term.items()}
    if isinstance(term, Call):
        return Call(term.name, tuple(substitute(a, bindings) for a in term.args))
    if isinstance(term, RestList):
        rest = walk(term.rest, bindings)
        items = [substitute(t, bindings) for t in term.items]
        if isinstance(rest, list):
            return items + [substitute(t, bindings) for t in rest]
        return RestList(tuple(items), rest)
    if isinstance(term, Expression):
        return Expression(term.operator, tuple(substitute(a, bindings) for a in term.args))
    if isinstance(term, InstanceLiteral):
        return InstanceLiteral(term.tag, {k: substitute(v, bindings) for k, v in term.fields.items()})
    return term


def variables_in(term: Any, found: list[Variable] | None = None) -> list[Variable]:
    """Collect the variables of a term in order of first appearance."""
    if found is None:
        found = []
    if isinstance(term, Variable):
        if term not in found:
            found.append(term)
    elif isinstance(term, list):
        for t in term:
            variables_in(t, found)
    elif isinstance(term, dict):
        for t in term.values():
            variables_in(t, found)
    elif isinstance(term, (Call, Expression)):
        for t in term.args:
            if isinstance(t, tuple):
                for u in t:
                    variables_in(u, found)
            else:
                variables_in(t, found)
    elif isinstance(term, RestList):
        for t in term.items:
            variables_in(t, found)
        variables_in(term.rest, found)
    elif isinstance(term, InstanceLiteral):
        for t in term.fields.values():
            variables_in(t, found)
    elif isinstance(term, Pattern) and term.fields:
        for t in term.fields.values():
            variables_in(t, found)
    return found


_BINARY_PRECEDENCE = {
    Operator.OR: 1,
    Operator.AND: 2,
}


def to_polar(term: Any) -> str:
    """Render a term back to Polar source syntax."""
    if term is None:
        return "nil"
    if term is True:
        return "true"
    if term is False:
        return "false"
    if isinstance(term, str):
        escaped = term.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
        return f'"{escaped}"'
    if isinstance(term, (int, float)):
        return repr(term)
    if isinstance(term, list):
        return "[" + ", ".join(to_polar(t) for t in term) + "]"
    if isinstance(term, dict):
        return "{" + ", ".join(f"{k}: {to_polar(v)}" for k, v in term.items()) + "}"
    if isinstance(term, RestList):
        items = [to_polar(t) for t in term.items] + [f"*{term.rest}"]
        return "[" + ", ".join(items) + "]"
    if isinstance(term, InstanceLiteral):
        return f"{term.tag}{to_polar(term.fields)}"
    if isinstance(term, Pattern):
        if term.tag is None:
            return to_polar(term.fields or {})
        if term.fields is None:
            return term.tag
        return f"{term.tag}{to_polar(term.fields)}"
    if isinstance(term, Expression):
        return _expression_to_polar(term)
    return str(term)


def _expression_to_polar(expr: Expression) -> str:
    op = expr.operator
    if op in _BINARY_PRECEDENCE:
        joiner = ", " if op is Operator.AND else " | "
        parts = []
        for arg in expr.args:
            text = to_polar(arg)
            if (
                isinstance(arg, Expression)
                and arg.operator in _BINARY_PRECEDENCE
                and _BINARY_PRECEDENCE[arg.operator] < _BINARY_PRECEDENCE[op]
            ):
                text = f"({text})"
            parts.append(text)
        return joiner.join(parts)
    if op is Operator.NOT:
        return f"!({to_polar(expr.args[0])})"
    if op is Operator.DOT:
        target, name, call_args = expr.args
        text = f"{to_polar(target)}.{name}"
        if call_args is not None:
            text += "(" + ", ".join(to_polar(a) for a in call_args) + ")"
        return text
    if op is Operator.NEW:
        return f"new {to_polar(expr.args[0])}"
    left, right = expr.args
    return f"{to_polar(left)} {op.value} {to_polar(right)}"
