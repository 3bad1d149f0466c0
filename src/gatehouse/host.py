"""
Host side of query evaluation: term marshalling and kernel callbacks.

A Host is one evaluation context. It converts application values into
kernel terms and back, and answers the kernel's questions about host
objects (class membership, attribute lookup, method calls, construction,
comparison). Each query gets its own Host bound to a registry snapshot.

Marshalling rules:
    - None, bool, int, float, str map to themselves
    - list and tuple map to lists, str-keyed dicts to dicts
    - Predicate maps to a kernel Call, Variable passes through
    - Anything else becomes an ExternalInstance handle whose id is
      assigned by this context; the same object always gets the same id

Design Principles:
    - Handles are only meaningful inside the context that issued them
    - Host exceptions never leak raw into the kernel; they are wrapped in
      ExternalCallError with the original chained as __cause__
"""

import inspect
import logging
import operator
from collections.abc import Iterator
from dataclasses import dataclass, field
from itertools import count
from typing import Any

from gatehouse.errors import (
    ExternalCallError,
    GatehouseError,
    MarshalError,
    UnregisteredClassError,
)
from gatehouse.kernel.machine import BUILTIN_TYPES
from gatehouse.kernel.terms import Call, ExternalInstance, Operator, Variable
from gatehouse.registry import RegistrySnapshot

logger = logging.getLogger(__name__)

_COMPARE_OPS = {
    Operator.EQ: operator.eq,
    Operator.NEQ: operator.ne,
    Operator.LT: operator.lt,
    Operator.LEQ: operator.le,
    Operator.GT: operator.gt,
    Operator.GEQ: operator.ge,
}


@dataclass(frozen=True)
class Predicate:
    """
    Host-side value for a predicate application ``name(args...)``.

    Pass one as a query argument to build a nested call, or receive one
    back when a result variable is bound to a call term.
    """

    name: str
    args: tuple[Any, ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", tuple(self.args))

    def __str__(self) -> str:
        return f"{self.name}({', '.join(repr(a) for a in self.args)})"


class Host:
    """
    One evaluation context.

    Attributes:
        registry: Snapshot of classes and constants this context sees
        _instances: Host objects by handle id
        _ids: Handle id by ``id()`` of the host object
    """

    def __init__(self, registry: RegistrySnapshot) -> None:
        self.registry = registry
        self._instances: dict[int, Any] = {}
        self._ids: dict[int, int] = {}
        self._next_id = count(1)

    def clone(self) -> "Host":
        """A fresh context over the same registry snapshot, with no handles."""
        return Host(self.registry)

    # =========================================================================
    # Marshalling
    # =========================================================================

    def to_term(self, value: Any) -> Any:
        """
        Convert a host value into a kernel term.

        Raises:
            MarshalError: If a dict has a non-string key
        """
        if value is None or isinstance(value, (bool, int, float, str)):
            return value
        if isinstance(value, (Variable, ExternalInstance)):
            return value
        if isinstance(value, Predicate):
            return Call(value.name, tuple(self.to_term(a) for a in value.args))
        if isinstance(value, (list, tuple)):
            return [self.to_term(v) for v in value]
        if isinstance(value, dict):
            term = {}
            for key, v in value.items():
                if not isinstance(key, str):
                    raise MarshalError(
                        value=repr(value),
                        message=f"Dictionary keys must be strings, got {type(key).__name__}: {key!r}",
                    )
                term[key] = self.to_term(v)
            return term
        return ExternalInstance(self.cache_instance(value))

    def from_term(self, term: Any, expected_type: type | None = None) -> Any:
        """
        Convert a kernel term back into a host value.

        Args:
            term: The term to convert
            expected_type: If given, the result must be an instance of it

        Raises:
            MarshalError: On an unknown handle, a term with no host
                representation, or a type mismatch
        """
        value = self._from_term(term)
        if expected_type is not None and not isinstance(value, expected_type):
            raise MarshalError(
                value=repr(value),
                message=f"Expected {expected_type.__name__}, got {type(value).__name__}",
            )
        return value

    def _from_term(self, term: Any) -> Any:
        if term is None or isinstance(term, (bool, int, float, str, Variable)):
            return term
        if isinstance(term, list):
            return [self._from_term(t) for t in term]
        if isinstance(term, dict):
            return {k: self._from_term(v) for k, v in term.items()}
        if isinstance(term, Call):
            return Predicate(term.name, tuple(self._from_term(a) for a in term.args))
        if isinstance(term, ExternalInstance):
            try:
                return self._instances[term.instance_id]
            except KeyError:
                raise MarshalError(
                    value=str(term),
                    message=f"Unknown instance id {term.instance_id} in this evaluation context",
                ) from None
        raise MarshalError(value=repr(term), message=f"Term has no host representation: {term}")

    def cache_instance(self, obj: Any) -> int:
        """Return the handle id for ``obj``, assigning a new one if needed."""
        key = id(obj)
        instance_id = self._ids.get(key)
        if instance_id is None:
            instance_id = next(self._next_id)
            self._ids[key] = instance_id
            self._instances[instance_id] = obj
        return instance_id

    def has_instance(self, instance_id: int) -> bool:
        return instance_id in self._instances

    # =========================================================================
    # Kernel Callbacks
    # =========================================================================

    def isa(self, term: Any, tag: str) -> bool:
        """
        Check whether a term is an instance of the class registered as ``tag``.

        Raises:
            UnregisteredClassError: If nothing is registered under ``tag``
        """
        entry = self.registry.get_class(tag)
        if isinstance(term, Variable):
            return False
        if entry is None:
            if tag in BUILTIN_TYPES:
                return isinstance(self.from_term(term), BUILTIN_TYPES[tag])
            raise UnregisteredClassError(name=tag)
        return isinstance(self.from_term(term), entry.cls)

    def lookup(
        self,
        term: ExternalInstance,
        field: str,
        args: tuple[Any, ...] | None,
        strict: bool = True,
    ) -> Iterator[Any]:
        """
        Read an attribute or call a method on a host object.

        A method returning a generator produces one result per item.
        With ``strict=False`` a missing attribute produces no results
        instead of an error (used when matching field patterns).

        Raises:
            ExternalCallError: If the lookup or call raises
        """
        obj = self.from_term(term)
        try:
            attr = getattr(obj, field)
        except AttributeError as e:
            if not strict:
                return
            raise ExternalCallError(attribute=field, underlying_error=str(e)) from e
        except GatehouseError:
            raise
        except Exception as e:
            raise ExternalCallError(attribute=field, underlying_error=str(e)) from e

        if args is None:
            yield self.to_term(attr)
            return

        host_args = [self.from_term(a) for a in args]
        try:
            result = attr(*host_args)
        except GatehouseError:
            raise
        except Exception as e:
            raise ExternalCallError(attribute=field, underlying_error=str(e)) from e

        if inspect.isgenerator(result):
            yield from self._iterate_host(result, field)
        else:
            yield self.to_term(result)

    def iterate(self, term: ExternalInstance) -> Iterator[Any]:
        """Yield the items of an iterable host object as terms."""
        obj = self.from_term(term)
        try:
            iterator = iter(obj)
        except TypeError as e:
            raise ExternalCallError(attribute="__iter__", underlying_error=str(e)) from e
        yield from self._iterate_host(iterator, "__iter__")

    def make_instance(self, tag: str, fields: dict[str, Any]) -> ExternalInstance:
        """
        Construct a registered class from a ``Tag{field: value}`` literal.

        Raises:
            UnknownConstructorError: If ``tag`` is not registered
            ExternalCallError: If the constructor raises
        """
        host_fields = {k: self.from_term(v) for k, v in fields.items()}
        try:
            obj = self.registry.construct(tag, host_fields)
        except GatehouseError:
            raise
        except Exception as e:
            raise ExternalCallError(attribute=tag, underlying_error=str(e)) from e
        logger.debug("Constructed %s instance from policy", tag)
        return ExternalInstance(self.cache_instance(obj))

    def unify(self, left: Any, right: Any) -> bool:
        """Host objects unify when they are identical or compare equal."""
        a = self.from_term(left)
        b = self.from_term(right)
        if a is b:
            return True
        try:
            return bool(a == b)
        except Exception as e:
            raise ExternalCallError(attribute="__eq__", underlying_error=str(e)) from e

    def compare(self, op: Operator, left: Any, right: Any) -> bool:
        """Apply a comparison operator to host values."""
        a = self.from_term(left)
        b = self.from_term(right)
        try:
            return bool(_COMPARE_OPS[op](a, b))
        except Exception as e:
            raise ExternalCallError(attribute=op.value, underlying_error=str(e)) from e

    def constant_names(self) -> frozenset[str]:
        """Names of the registry's constants."""
        return frozenset(self.registry.constants)

    def constant(self, name: str) -> Any:
        """
        One constant, marshalled into this context.

        Constants are marshalled when a query first refers to them, so a
        value that cannot be marshalled only fails the queries that use it.

        Raises:
            MarshalError: If the value has no term representation
        """
        return self.to_term(self.registry.constants[name])

    def _iterate_host(self, iterator: Any, field: str) -> Iterator[Any]:
        while True:
            try:
                item = next(iterator)
            except StopIteration:
                return
            except GatehouseError:
                raise
            except Exception as e:
                raise ExternalCallError(attribute=field, underlying_error=str(e)) from e
            yield self.to_term(item)
