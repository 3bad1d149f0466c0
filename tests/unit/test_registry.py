"""
Unit tests for the class registry.

Tests cover:
- Class registration, rebinding and conflicts
- Constants and their interaction with class names
- Construction through registered constructors
- Snapshots and locking
"""

import threading

import pytest

from gatehouse.errors import DuplicateRegistrationError, UnknownConstructorError
from gatehouse.registry import ClassRegistry


class User:
    def __init__(self, name: str = "anon") -> None:
        self.name = name


class Admin(User):
    pass


class TestRegister:
    """Tests for register()."""

    def test_register_and_lookup(self, registry: ClassRegistry) -> None:
        entry = registry.register("User", User)
        assert entry.name == "User"
        assert entry.cls is User
        assert registry.get_class("User") == entry
        assert registry.has_class("User")
        assert "User" in registry
        assert len(registry) == 1

    def test_registration_binds_constant(self, registry: ClassRegistry) -> None:
        registry.register("User", User)
        assert registry.constants()["User"] is User

    def test_same_class_rebinds(self, registry: ClassRegistry) -> None:
        registry.register("User", User)

        def factory(**fields: str) -> User:
            return User(**fields)

        entry = registry.register("User", User, constructor=factory)
        assert entry.constructor is factory
        assert len(registry) == 1

    def test_different_class_conflicts(self, registry: ClassRegistry) -> None:
        registry.register("User", User)
        with pytest.raises(DuplicateRegistrationError) as exc_info:
            registry.register("User", Admin)
        assert exc_info.value.name == "User"
        assert registry.get_class("User").cls is User

    def test_class_name_taken_by_constant(self, registry: ClassRegistry) -> None:
        registry.register_constant("User", 42)
        with pytest.raises(DuplicateRegistrationError):
            registry.register("User", User)

    def test_empty_name_rejected(self, registry: ClassRegistry) -> None:
        with pytest.raises(ValueError):
            registry.register("", User)

    def test_non_class_rejected(self, registry: ClassRegistry) -> None:
        with pytest.raises(ValueError):
            registry.register("User", User())  # type: ignore[arg-type]

    def test_list_classes_sorted(self, registry: ClassRegistry) -> None:
        registry.register("User", User)
        registry.register("Admin", Admin)
        assert registry.list_classes() == ["Admin", "User"]
        assert repr(registry) == "<ClassRegistry: [Admin, User]>"

    def test_get_missing(self, registry: ClassRegistry) -> None:
        assert registry.get_class("Nope") is None
        assert not registry.has_class("Nope")


class TestConstants:
    """Tests for register_constant()."""

    def test_rebinding_overwrites(self, registry: ClassRegistry) -> None:
        registry.register_constant("LIMIT", 1)
        registry.register_constant("LIMIT", 2)
        assert registry.constants()["LIMIT"] == 2

    def test_cannot_shadow_class(self, registry: ClassRegistry) -> None:
        registry.register("User", User)
        with pytest.raises(DuplicateRegistrationError):
            registry.register_constant("User", "something else")

    def test_rebinding_class_to_itself_allowed(self, registry: ClassRegistry) -> None:
        registry.register("User", User)
        registry.register_constant("User", User)
        assert registry.constants()["User"] is User

    def test_constants_returns_copy(self, registry: ClassRegistry) -> None:
        registry.register_constant("A", 1)
        registry.constants()["A"] = 99
        assert registry.constants()["A"] == 1


class TestConstruct:
    """Tests for construct()."""

    def test_default_constructor_is_class(self, registry: ClassRegistry) -> None:
        registry.register("User", User)
        user = registry.construct("User", {"name": "alice"})
        assert isinstance(user, User)
        assert user.name == "alice"

    def test_custom_constructor(self, registry: ClassRegistry) -> None:
        registry.register("User", User, constructor=lambda **kw: Admin(**kw))
        assert isinstance(registry.construct("User", {}), Admin)

    def test_constructor_receives_fields_as_keywords(self, registry: ClassRegistry) -> None:
        received = {}

        def build(**fields: object) -> User:
            received.update(fields)
            return User(str(fields["name"]))

        registry.register("User", User, constructor=build)
        user = registry.construct("User", {"name": "alice", "level": 2})
        assert received == {"name": "alice", "level": 2}
        assert user.name == "alice"

    def test_each_call_builds_new_object(self, registry: ClassRegistry) -> None:
        registry.register("User", User)
        assert registry.construct("User", {}) is not registry.construct("User", {})

    def test_unknown_name(self, registry: ClassRegistry) -> None:
        with pytest.raises(UnknownConstructorError):
            registry.construct("Ghost", {})


class TestSnapshot:
    """Tests for snapshot()."""

    def test_snapshot_is_isolated(self, registry: ClassRegistry) -> None:
        registry.register("User", User)
        snapshot = registry.snapshot()
        registry.register("Admin", Admin)
        registry.register_constant("LIMIT", 3)
        assert snapshot.get_class("Admin") is None
        assert "LIMIT" not in snapshot.constants
        assert snapshot.get_class("User").cls is User

    def test_snapshot_constructs(self, registry: ClassRegistry) -> None:
        registry.register("User", User)
        assert isinstance(registry.snapshot().construct("User", {}), User)


class TestLocking:
    """Accessors wait for the registry lock."""

    @pytest.mark.parametrize(
        ("read", "expected"),
        [(len, 1), (lambda r: "User" in r, True)],
        ids=["len", "contains"],
    )
    def test_reads_wait_for_lock(self, registry: ClassRegistry, read, expected) -> None:
        registry.register("User", User)
        seen = []
        with registry._lock:
            reader = threading.Thread(target=lambda: seen.append(read(registry)))
            reader.start()
            reader.join(timeout=0.2)
            assert reader.is_alive()
            assert seen == []
        reader.join()
        assert seen == [expected]
