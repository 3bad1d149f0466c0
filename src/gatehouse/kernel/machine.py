"""
Goal solver for the Gatehouse kernel.

The Machine performs depth-first resolution over the knowledge base. Every
solving step is a generator of bindings, so a query produces its solutions
lazily and in declaration order: rules are tried in the order they were
loaded and alternatives of ``|`` left to right.

The machine never touches host objects directly. Whenever evaluation needs
the application's object model (an ``isa`` check against a class, a field
lookup or method call on an instance, constructing ``Class{...}``,
comparing two instances) it goes through the HostCallbacks protocol.
"""

from collections.abc import Iterator
from itertools import count
from typing import TYPE_CHECKING, Any, Protocol

from gatehouse.errors import EngineRuntimeError, GatehouseError
from gatehouse.kernel.terms import (
    COMPARISONS,
    Bindings,
    Call,
    Expression,
    ExternalInstance,
    InstanceLiteral,
    Operator,
    Parameter,
    Pattern,
    RestList,
    Rule,
    Variable,
    substitute,
    to_polar,
    variables_in,
    walk,
)

if TYPE_CHECKING:
    from gatehouse.kernel.knowledge import KnowledgeBase

BUILTIN_TYPES: dict[str, tuple[type, ...]] = {
    "Boolean": (bool,),
    "Integer": (int,),
    "Float": (float,),
    "String": (str,),
    "List": (list, RestList),
    "Dictionary": (dict,),
}


class HostCallbacks(Protocol):
    """What the machine needs from the host application."""

    def isa(self, term: Any, tag: str) -> bool: ...

    def lookup(
        self,
        term: ExternalInstance,
        field: str,
        args: tuple[Any, ...] | None,
        strict: bool = True,
    ) -> Iterator[Any]: ...

    def iterate(self, term: ExternalInstance) -> Iterator[Any]: ...

    def make_instance(self, tag: str, fields: dict[str, Any]) -> ExternalInstance: ...

    def unify(self, left: Any, right: Any) -> bool: ...

    def compare(self, op: Operator, left: Any, right: Any) -> bool: ...

    def constant_names(self) -> frozenset[str]: ...

    def constant(self, name: str) -> Any: ...


class Machine:
    """
    Depth-first solver for one query.

    Attributes:
        kb: The knowledge base to resolve against
        host: Host callbacks for this query's evaluation context
        max_depth: Maximum nesting of rule applications
        _constant_names: Constant names, captured when the query starts
        _constant_terms: Constants marshalled so far, by name
    """

    def __init__(self, kb: "KnowledgeBase", host: HostCallbacks, max_depth: int) -> None:
        self.kb = kb
        self.host = host
        self.max_depth = max_depth
        self._constant_names = host.constant_names()
        self._constant_terms: dict[str, Any] = {}
        self._fresh = count(1)

    # =========================================================================
    # Goals
    # =========================================================================

    def prepare(self, goal: Any) -> Any:
        """Replace variables named after constants with the constant values."""
        return self._rename(goal, lambda v: self._constant(v) if v.name in self._constant_names else v)

    def _constant(self, var: Variable) -> Any:
        if var.name not in self._constant_terms:
            self._constant_terms[var.name] = self.host.constant(var.name)
        return self._constant_terms[var.name]

    def solve(self, goal: Any, bindings: Bindings, depth: int = 0) -> Iterator[Bindings]:
        """Yield every binding set under which ``goal`` holds."""
        if depth > self.max_depth:
            raise EngineRuntimeError(
                message=f"Maximum query depth ({self.max_depth}) exceeded",
                suggestion="Check the policy for unbounded recursion or raise max_query_depth",
            )

        goal = walk(goal, bindings)

        if goal is True:
            yield bindings
        elif goal is False:
            return
        elif isinstance(goal, Call):
            yield from self._solve_call(goal, bindings, depth)
        elif isinstance(goal, Expression):
            yield from self._solve_expression(goal, bindings, depth)
        elif isinstance(goal, Variable):
            raise EngineRuntimeError(message=f"Cannot query an unbound variable: {goal}")
        else:
            raise EngineRuntimeError(message=f"Not a valid goal: {to_polar(goal)}")

    def _solve_expression(self, goal: Expression, bindings: Bindings, depth: int) -> Iterator[Bindings]:
        op = goal.operator

        if op is Operator.AND:
            yield from self._solve_and(goal.args, 0, bindings, depth)

        elif op is Operator.OR:
            for alternative in goal.args:
                yield from self.solve(alternative, bindings, depth)

        elif op is Operator.NOT:
            solutions = self.solve(goal.args[0], bindings, depth)
            try:
                found = next(solutions, None) is not None
            finally:
                solutions.close()
            if not found:
                yield bindings

        elif op is Operator.UNIFY:
            left, right = goal.args
            for l_val, b in self._evaluate(left, bindings):
                for r_val, b2 in self._evaluate(right, b):
                    unified = self.unify(l_val, r_val, b2)
                    if unified is not None:
                        yield unified

        elif op in COMPARISONS:
            left, right = goal.args
            for l_val, b in self._evaluate(left, bindings):
                for r_val, b2 in self._evaluate(right, b):
                    if self._compare(op, l_val, r_val, b2):
                        yield b2

        elif op is Operator.IN:
            left, right = goal.args
            for l_val, b in self._evaluate(left, bindings):
                for r_val, b2 in self._evaluate(right, b):
                    yield from self._solve_in(l_val, r_val, b2)

        elif op is Operator.ISA:
            value, pattern = goal.args
            for v, b in self._evaluate(value, bindings):
                yield from self._isa(v, pattern, b)

        elif op in (Operator.DOT, Operator.NEW):
            # A lookup used as a goal holds when it evaluates to true.
            for value, b in self._evaluate(goal, bindings):
                if walk(value, b) is True:
                    yield b

        else:
            raise EngineRuntimeError(message=f"Unsupported operator: {op.value}")

    def _solve_and(
        self,
        goals: tuple[Any, ...],
        index: int,
        bindings: Bindings,
        depth: int,
    ) -> Iterator[Bindings]:
        if index == len(goals):
            yield bindings
            return
        for b in self.solve(goals[index], bindings, depth):
            yield from self._solve_and(goals, index + 1, b, depth)

    def _solve_call(self, goal: Call, bindings: Bindings, depth: int) -> Iterator[Bindings]:
        arity = len(goal.args)
        builtin = self.kb.builtin(goal.name, arity)

        for args, b in self._evaluate_all(goal.args, bindings):
            if builtin is not None:
                resolved = [substitute(a, b) for a in args]
                for outputs in builtin(*resolved):
                    unified: Bindings | None = b
                    for arg, out in zip(args, outputs):
                        unified = self.unify(arg, out, unified)
                        if unified is None:
                            break
                    if unified is not None:
                        yield unified
                continue

            for rule in self.kb.rules_for(goal.name):
                if len(rule.params) != arity:
                    continue
                rule = self._rename_rule(rule)
                for matched in self._match_params(rule.params, args, 0, b):
                    yield from self.solve(rule.body, matched, depth + 1)

    def _match_params(
        self,
        params: tuple[Parameter, ...],
        args: tuple[Any, ...],
        index: int,
        bindings: Bindings,
    ) -> Iterator[Bindings]:
        if index == len(params):
            yield bindings
            return
        param = params[index]
        if isinstance(param.term, Expression):
            # Head lookups such as ``h(x: {y: y}, x.y)`` see earlier params.
            choices: Any = self._evaluate(param.term, bindings)
        else:
            choices = [(param.term, bindings)]
        for term, b in choices:
            unified = self.unify(term, args[index], b)
            if unified is None:
                continue
            if param.specializer is None:
                yield from self._match_params(params, args, index + 1, unified)
                continue
            for b2 in self._isa(args[index], param.specializer, unified):
                yield from self._match_params(params, args, index + 1, b2)

    def _solve_in(self, item: Any, container: Any, bindings: Bindings) -> Iterator[Bindings]:
        container = walk(container, bindings)
        if isinstance(container, list):
            elements: Any = container
        elif isinstance(container, RestList):
            elements = container.items
        elif isinstance(container, dict):
            elements = list(container.keys())
        elif isinstance(container, str):
            needle = walk(item, bindings)
            if isinstance(needle, str) and needle in container:
                yield bindings
            return
        elif isinstance(container, ExternalInstance):
            elements = self.host.iterate(container)
        elif isinstance(container, Variable):
            raise EngineRuntimeError(message=f"Cannot iterate over an unbound variable: {container}")
        else:
            raise EngineRuntimeError(message=f"Cannot iterate over {to_polar(container)}")
        for element in elements:
            unified = self.unify(item, element, bindings)
            if unified is not None:
                yield unified

    # =========================================================================
    # Specializers
    # =========================================================================

    def _isa(self, value: Any, pattern: Any, bindings: Bindings) -> Iterator[Bindings]:
        value = walk(value, bindings)
        pattern = walk(pattern, bindings)

        if isinstance(pattern, InstanceLiteral):
            pattern = Pattern(pattern.tag, pattern.fields)
        elif isinstance(pattern, dict):
            pattern = Pattern(None, pattern)

        if not isinstance(pattern, Pattern):
            unified = self.unify(value, pattern, bindings)
            if unified is not None:
                yield unified
            return

        if pattern.tag is not None and not self._isa_class(value, pattern.tag):
            return
        if pattern.fields is None:
            yield bindings
            return
        if pattern.tag is None and not isinstance(value, (dict, ExternalInstance)):
            return
        yield from self._isa_fields(value, list(pattern.fields.items()), 0, bindings)

    def _isa_class(self, value: Any, tag: str) -> bool:
        if isinstance(value, Variable):
            return False
        if tag in BUILTIN_TYPES and not isinstance(value, ExternalInstance):
            if isinstance(value, bool) and tag != "Boolean":
                return False
            return isinstance(value, BUILTIN_TYPES[tag])
        return self.host.isa(value, tag)

    def _isa_fields(
        self,
        value: Any,
        fields: list[tuple[str, Any]],
        index: int,
        bindings: Bindings,
    ) -> Iterator[Bindings]:
        if index == len(fields):
            yield bindings
            return
        key, sub_pattern = fields[index]
        if isinstance(value, dict):
            if key not in value:
                return
            candidates: Any = [value[key]]
        elif isinstance(value, ExternalInstance):
            candidates = self.host.lookup(value, key, None, strict=False)
        else:
            return
        for candidate in candidates:
            for b in self._isa(candidate, sub_pattern, bindings):
                yield from self._isa_fields(value, fields, index + 1, b)

    # =========================================================================
    # Evaluation of lookups and instance literals
    # =========================================================================

    def _evaluate(self, term: Any, bindings: Bindings) -> Iterator[tuple[Any, Bindings]]:
        """Yield (value, bindings) for each way ``term`` can be evaluated."""
        term = walk(term, bindings)

        if isinstance(term, Expression):
            if term.operator is Operator.DOT:
                yield from self._evaluate_dot(term, bindings)
                return
            if term.operator is Operator.NEW:
                term = term.args[0]
            else:
                raise EngineRuntimeError(message=f"Cannot use {to_polar(term)} as a value")

        if isinstance(term, (list, dict, Call)) and not _needs_evaluation(term):
            yield term, bindings
            return

        if isinstance(term, InstanceLiteral):
            for values, b in self._evaluate_all(tuple(term.fields.values()), bindings):
                fields = {k: substitute(v, b) for k, v in zip(term.fields.keys(), values)}
                yield self.host.make_instance(term.tag, fields), b
        elif isinstance(term, list):
            for values, b in self._evaluate_all(tuple(term), bindings):
                yield list(values), b
        elif isinstance(term, dict):
            for values, b in self._evaluate_all(tuple(term.values()), bindings):
                yield dict(zip(term.keys(), values)), b
        elif isinstance(term, Call):
            for values, b in self._evaluate_all(term.args, bindings):
                yield Call(term.name, values), b
        else:
            yield term, bindings

    def _evaluate_all(
        self,
        terms: tuple[Any, ...],
        bindings: Bindings,
    ) -> Iterator[tuple[tuple[Any, ...], Bindings]]:
        """Yield one (values, bindings) per combination of the terms' evaluations."""
        if not terms:
            yield (), bindings
            return
        # One pending generator per term being evaluated; values[i] is the
        # current choice for terms[i].
        values: list[Any] = []
        pending = [self._evaluate(terms[0], bindings)]
        while pending:
            index = len(pending) - 1
            try:
                value, b = next(pending[-1])
            except StopIteration:
                pending.pop()
                continue
            del values[index:]
            values.append(value)
            if index + 1 == len(terms):
                yield tuple(values), b
            else:
                pending.append(self._evaluate(terms[index + 1], b))

    def _evaluate_dot(self, expr: Expression, bindings: Bindings) -> Iterator[tuple[Any, Bindings]]:
        target, field, call_args = expr.args
        for obj, b in self._evaluate(target, bindings):
            obj = walk(obj, b)
            if call_args is None:
                arg_choices: Any = [((), b)]
            else:
                arg_choices = self._evaluate_all(call_args, b)
            for args, b2 in arg_choices:
                for value in self._lookup(obj, field, None if call_args is None else args, b2):
                    yield value, b2

    def _lookup(
        self,
        obj: Any,
        field: str,
        args: tuple[Any, ...] | None,
        bindings: Bindings,
    ) -> Iterator[Any]:
        if isinstance(obj, dict):
            if args is not None:
                raise EngineRuntimeError(message=f"Cannot call method {field!r} on a dictionary")
            if field in obj:
                yield obj[field]
            return
        if isinstance(obj, ExternalInstance):
            resolved = None if args is None else tuple(substitute(a, bindings) for a in args)
            yield from self.host.lookup(obj, field, resolved)
            return
        if isinstance(obj, Variable):
            raise EngineRuntimeError(message=f"Cannot look up {field!r} on an unbound variable: {obj}")
        raise EngineRuntimeError(message=f"Cannot look up {field!r} on {to_polar(obj)}")

    # =========================================================================
    # Unification and comparison
    # =========================================================================

    def unify(self, left: Any, right: Any, bindings: Bindings) -> Bindings | None:
        """Unify two terms, returning extended bindings or None on failure."""
        left = walk(left, bindings)
        right = walk(right, bindings)

        if isinstance(left, Variable):
            if left == right:
                return bindings
            return {**bindings, left: right}
        if isinstance(right, Variable):
            return {**bindings, right: left}

        if isinstance(left, RestList) or isinstance(right, RestList):
            return self._unify_rest(left, right, bindings)

        if isinstance(left, list) and isinstance(right, list):
            if len(left) != len(right):
                return None
            return self._unify_pairs(zip(left, right), bindings)

        if isinstance(left, dict) and isinstance(right, dict):
            if left.keys() != right.keys():
                return None
            return self._unify_pairs(((left[k], right[k]) for k in left), bindings)

        if isinstance(left, Call) and isinstance(right, Call):
            if left.name != right.name or len(left.args) != len(right.args):
                return None
            return self._unify_pairs(zip(left.args, right.args), bindings)

        if isinstance(left, ExternalInstance) or isinstance(right, ExternalInstance):
            return bindings if self.host.unify(left, right) else None

        return bindings if _primitive_equal(left, right) else None

    def _unify_pairs(self, pairs: Any, bindings: Bindings) -> Bindings | None:
        result: Bindings | None = bindings
        for a, b in pairs:
            result = self.unify(a, b, result)
            if result is None:
                return None
        return result

    def _unify_rest(self, left: Any, right: Any, bindings: Bindings) -> Bindings | None:
        if not isinstance(left, RestList):
            left, right = right, left
        if isinstance(right, list):
            if len(right) < len(left.items):
                return None
            n = len(left.items)
            unified = self._unify_pairs(zip(left.items, right[:n]), bindings)
            if unified is None:
                return None
            return self.unify(left.rest, right[n:], unified)
        if isinstance(right, RestList):
            if len(left.items) > len(right.items):
                left, right = right, left
            n = len(left.items)
            unified = self._unify_pairs(zip(left.items, right.items[:n]), bindings)
            if unified is None:
                return None
            tail = RestList(right.items[n:], right.rest) if right.items[n:] else right.rest
            return self.unify(left.rest, tail, unified)
        return None

    def _compare(self, op: Operator, left: Any, right: Any, bindings: Bindings) -> bool:
        left = substitute(left, bindings)
        right = substitute(right, bindings)
        for side in (left, right):
            if isinstance(side, Variable):
                raise EngineRuntimeError(
                    message=f"Cannot compare unbound variable: {to_polar(left)} {op.value} {to_polar(right)}"
                )
        if isinstance(left, ExternalInstance) or isinstance(right, ExternalInstance):
            return self.host.compare(op, left, right)
        if op is Operator.EQ:
            return self.unify(left, right, {}) is not None
        if op is Operator.NEQ:
            return self.unify(left, right, {}) is None
        try:
            if op is Operator.LT:
                return left < right
            if op is Operator.LEQ:
                return left <= right
            if op is Operator.GT:
                return left > right
            return left >= right
        except TypeError as e:
            raise EngineRuntimeError(
                message=f"Cannot compare {to_polar(left)} {op.value} {to_polar(right)}: {e}"
            ) from e

    # =========================================================================
    # Renaming
    # =========================================================================

    def _rename_rule(self, rule: Rule) -> Rule:
        suffix = next(self._fresh)
        renamed: dict[Variable, Any] = {}

        def fresh(var: Variable) -> Any:
            if var.name in self._constant_names:
                return self._constant(var)
            if var not in renamed:
                renamed[var] = Variable(f"{var.name}#{suffix}")
            return renamed[var]

        params = tuple(
            Parameter(self._rename(p.term, fresh), self._rename(p.specializer, fresh))
            for p in rule.params
        )
        return Rule(rule.name, params, self._rename(rule.body, fresh), rule.source_id)

    def _rename(self, term: Any, fn: Any) -> Any:
        if isinstance(term, Variable):
            return fn(term)
        if isinstance(term, list):
            return [self._rename(t, fn) for t in term]
        if isinstance(term, tuple):
            return tuple(self._rename(t, fn) for t in term)
        if isinstance(term, dict):
            return {k: self._rename(v, fn) for k, v in term.items()}
        if isinstance(term, Call):
            return Call(term.name, self._rename(term.args, fn))
        if isinstance(term, Expression):
            return Expression(term.operator, self._rename(term.args, fn))
        if isinstance(term, RestList):
            rest = fn(term.rest)
            return RestList(self._rename(term.items, fn), rest)
        if isinstance(term, InstanceLiteral):
            return InstanceLiteral(term.tag, self._rename(term.fields, fn))
        if isinstance(term, Pattern):
            fields = None if term.fields is None else self._rename(term.fields, fn)
            return Pattern(term.tag, fields)
        return term


class KernelQuery:
    """
    A running query inside the kernel.

    ``next_result()`` advances the search to the next solution and returns
    the query variables' values as terms, or None once the search space is
    exhausted.
    """

    def __init__(
        self,
        kb: "KnowledgeBase",
        goal: Any,
        host: HostCallbacks,
        text: str | None = None,
    ) -> None:
        self.machine = Machine(kb, host, kb.max_depth)
        self.goal = self.machine.prepare(goal)
        self.text = text if text is not None else to_polar(goal)
        self.variables = [
            v for v in variables_in(self.goal) if not v.name.startswith("_")
        ]
        self._solutions = self.machine.solve(self.goal, {})
        self._done = False

    def next_result(self) -> dict[str, Any] | None:
        """Advance to the next solution."""
        if self._done:
            return None
        try:
            bindings = next(self._solutions)
        except StopIteration:
            self._done = True
            return None
        except RecursionError as e:
            self.close()
            raise EngineRuntimeError(
                message="Query recursion limit reached",
                query=self.text,
                suggestion="Check the policy for unbounded recursion or lower max_query_depth",
            ) from e
        except GatehouseError:
            self.close()
            raise
        return {v.name: substitute(v, bindings) for v in self.variables}

    def close(self) -> None:
        """Abandon the search and release its generators."""
        self._done = True
        self._solutions.close()


def _primitive_equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    return type(left) is type(right) and left == right


def _needs_evaluation(term: Any) -> bool:
    """True if a list, dict or call holds a lookup or instance literal somewhere."""
    if isinstance(term, (Expression, InstanceLiteral)):
        return True
    if isinstance(term, list):
        return any(_needs_evaluation(t) for t in term)
    if isinstance(term, dict):
        return any(_needs_evaluation(t) for t in term.values())
    if isinstance(term, Call):
        return any(_needs_evaluation(t) for t in term.args)
    return False
