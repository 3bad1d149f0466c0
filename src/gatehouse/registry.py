"""
Class registry for Gatehouse.

The registry maps the symbolic names used in policy source to host classes,
their optional constructors, and named constants. Every evaluation context
works from a snapshot of the registry taken when its query is created.

Design:
    - One registry per engine instance (no global default)
    - Thread-safe registration, lookup and snapshotting
    - Registering a class also binds a constant of the same name
    - Registrations survive Gatehouse.clear()

Usage:
    registry = ClassRegistry()
    registry.register("User", User)
    registry.register_constant("ADMIN_ROLE", "admin")
    user = registry.construct("User", {"name": "alice"})
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from gatehouse.errors import DuplicateRegistrationError, UnknownConstructorError

# Called with a literal's fields as keyword arguments: ``Name{a: 1}`` -> ``constructor(a=1)``.
Constructor = Callable[..., Any]


@dataclass(frozen=True)
class ClassEntry:
    """
    A registered host class.

    Attributes:
        name: Symbolic name used in policy source
        cls: The host class
        constructor: Callable used for ``Name{...}`` literals (the class
            itself when no explicit constructor was given)
    """

    name: str
    cls: type
    constructor: Constructor | None = None


@dataclass(frozen=True)
class RegistrySnapshot:
    """An immutable copy of the registry's classes and constants."""

    classes: dict[str, ClassEntry]
    constants: dict[str, Any]

    def get_class(self, name: str) -> ClassEntry | None:
        return self.classes.get(name)

    def construct(self, name: str, fields: dict[str, Any]) -> Any:
        return _construct(self.classes.get(name), name, fields)


class ClassRegistry:
    """
    Registry of host classes and constants.

    Attributes:
        _classes: Registered classes by symbolic name
        _constants: Named constant values (including one per class)
        _lock: Guards mutations and snapshots
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._classes: dict[str, ClassEntry] = {}
        self._constants: dict[str, Any] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        cls: type,
        constructor: Constructor | None = None,
    ) -> ClassEntry:
        """
        Register a host class under a symbolic name.

        Registering the same class again under the same name rebinds its
        constructor. The class is also bound as a constant named ``name``.

        Args:
            name: Symbolic name used in policy source
            cls: The host class
            constructor: Optional factory; defaults to calling the class.
                Called with the literal's fields as keyword arguments

        Returns:
            The stored ClassEntry

        Raises:
            ValueError: If the name is empty or cls is not a class
            DuplicateRegistrationError: If the name is bound to a different class
        """
        if not name:
            msg = "Class name cannot be empty"
            raise ValueError(msg)
        if not isinstance(cls, type):
            msg = f"Expected a class, got {cls!r}"
            raise ValueError(msg)

        with self._lock:
            existing = self._classes.get(name)
            if existing is not None and existing.cls is not cls:
                raise DuplicateRegistrationError(name=name, existing=existing.cls.__qualname__)
            if name in self._constants and self._constants[name] is not cls and existing is None:
                raise DuplicateRegistrationError(name=name, existing=repr(self._constants[name]))

            entry = ClassEntry(name=name, cls=cls, constructor=constructor or cls)
            self._classes[name] = entry
            self._constants[name] = cls
            return entry

    def register_constant(self, name: str, value: Any) -> None:
        """
        Bind a named constant visible to every subsequent query.

        Re-binding a constant overwrites the previous value.

        Raises:
            ValueError: If the name is empty
            DuplicateRegistrationError: If the name is a registered class and
                the value is something else
        """
        if not name:
            msg = "Constant name cannot be empty"
            raise ValueError(msg)

        with self._lock:
            entry = self._classes.get(name)
            if entry is not None and value is not entry.cls:
                raise DuplicateRegistrationError(name=name, existing=entry.cls.__qualname__)
            self._constants[name] = value

    def construct(self, name: str, fields: dict[str, Any]) -> Any:
        """
        Build a new host instance from keyword fields.

        Raises:
            UnknownConstructorError: If nothing is registered under ``name``
        """
        with self._lock:
            entry = self._classes.get(name)
        return _construct(entry, name, fields)

    def get_class(self, name: str) -> ClassEntry | None:
        """Look up a class entry, returning None if not registered."""
        with self._lock:
            return self._classes.get(name)

    def has_class(self, name: str) -> bool:
        with self._lock:
            return name in self._classes

    def list_classes(self) -> list[str]:
        """
        List all registered class names.

        Returns:
            Class names in sorted order
        """
        with self._lock:
            return sorted(self._classes)

    def constants(self) -> dict[str, Any]:
        """Copy of the constant bindings."""
        with self._lock:
            return dict(self._constants)

    def snapshot(self) -> RegistrySnapshot:
        """Consistent copy of classes and constants for one evaluation context."""
        with self._lock:
            return RegistrySnapshot(classes=dict(self._classes), constants=dict(self._constants))

    def __len__(self) -> int:
        """Return the number of registered classes."""
        with self._lock:
            return len(self._classes)

    def __contains__(self, name: str) -> bool:
        """Check if a class is registered using 'in' operator."""
        with self._lock:
            return name in self._classes

    def __repr__(self) -> str:
        """String representation of the registry."""
        classes = ", ".join(self.list_classes())
        return f"<ClassRegistry: [{classes}]>"


def _construct(entry: ClassEntry | None, name: str, fields: dict[str, Any]) -> Any:
    if entry is None or entry.constructor is None:
        raise UnknownConstructorError(name=name)
    return entry.constructor(**fields)
