"""
Unit tests for the policy loader.

Tests cover:
- File validation and snapshotting into the load queue
- Queue ordering, replacement and failure handling
- Inline query checks and the partial-load policy
- clear() and the roles prelude
"""

from collections.abc import Callable
from pathlib import Path

import pytest

from gatehouse.errors import (
    DuplicateSourceError,
    InlineQueryFailedError,
    InvalidSourceExtensionError,
    PolicyFileReadError,
    PolicyParseError,
)
from gatehouse.loader import PolicyLoader
from gatehouse.registry import ClassRegistry
from gatehouse.schema import EngineConfig

WritePolicy = Callable[[str, str], Path]


@pytest.fixture
def loader(registry: ClassRegistry) -> PolicyLoader:
    return PolicyLoader(EngineConfig(), registry)


class TestEnqueue:
    """Tests for enqueue_file()."""

    def test_wrong_extension(self, loader: PolicyLoader, write_policy: WritePolicy) -> None:
        path = write_policy("policy.txt", "f(1);")
        with pytest.raises(InvalidSourceExtensionError) as exc_info:
            loader.enqueue_file(path)
        assert exc_info.value.source_id == str(path)
        assert loader.queued_sources() == []

    def test_missing_file(self, loader: PolicyLoader, temp_dir: Path) -> None:
        with pytest.raises(PolicyFileReadError) as exc_info:
            loader.enqueue_file(temp_dir / "missing.polar")
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_custom_extension(self, registry: ClassRegistry, write_policy: WritePolicy) -> None:
        loader = PolicyLoader(EngineConfig(policy_extension="rules"), registry)
        path = write_policy("a.rules", "f(1);")
        assert loader.enqueue_file(path) == str(path)
        with pytest.raises(InvalidSourceExtensionError):
            loader.enqueue_file(write_policy("b.polar", "f(1);"))

    def test_text_snapshotted(self, loader: PolicyLoader, write_policy: WritePolicy) -> None:
        path = write_policy("a.polar", "f(1);")
        loader.enqueue_file(path)
        path.write_text("f(2); f(3);")
        loader.flush_queue()
        assert len(loader.kb.rules_for("f")) == 1

    def test_requeue_replaces_text_keeps_position(
        self, loader: PolicyLoader, write_policy: WritePolicy
    ) -> None:
        a = write_policy("a.polar", "a(1);")
        b = write_policy("b.polar", "b(1);")
        loader.enqueue_file(a)
        loader.enqueue_file(b)
        a.write_text("a(2);")
        loader.enqueue_file(a)
        assert loader.queued_sources() == [str(a), str(b)]

        assert loader.flush_queue() == [str(a), str(b)]
        rules = loader.kb.rules_for("a")
        assert len(rules) == 1
        assert rules[0].params[0].term == 2


class TestFlush:
    """Tests for flush_queue()."""

    def test_loads_in_order_and_empties_queue(
        self, loader: PolicyLoader, write_policy: WritePolicy
    ) -> None:
        first = write_policy("first.polar", "f(1);")
        second = write_policy("second.polar", "f(2);")
        loader.enqueue_file(first)
        loader.enqueue_file(second)
        loader.flush_queue()
        assert loader.queued_sources() == []
        assert loader.loaded_sources() == [str(first), str(second)]
        assert [r.params[0].term for r in loader.kb.rules_for("f")] == [1, 2]

    def test_failure_drops_remaining(self, loader: PolicyLoader, write_policy: WritePolicy) -> None:
        good = write_policy("good.polar", "f(1);")
        bad = write_policy("bad.polar", "f(1")
        later = write_policy("later.polar", "g(1);")
        for path in (good, bad, later):
            loader.enqueue_file(path)

        with pytest.raises(PolicyParseError):
            loader.flush_queue()

        assert loader.queued_sources() == []
        assert loader.loaded_sources() == [str(good)]
        assert loader.kb.rules_for("g") == []

    def test_empty_queue(self, loader: PolicyLoader) -> None:
        assert loader.flush_queue() == []


class TestLoadSource:
    """Tests for load_source() and inline queries."""

    def test_parse_error_loads_nothing(self, loader: PolicyLoader) -> None:
        before = len(loader.kb)
        with pytest.raises(PolicyParseError):
            loader.load_source("f(1); g(", "broken")
        assert len(loader.kb) == before
        assert "broken" not in loader.loaded_sources()

    def test_inline_query_passes(self, loader: PolicyLoader, sample_policy: str) -> None:
        assert loader.load_source(sample_policy, "family") == "family"
        assert loader.loaded_sources() == ["family"]

    def test_inline_query_fails(self, loader: PolicyLoader) -> None:
        with pytest.raises(InlineQueryFailedError) as exc_info:
            loader.load_source("f(1);\n?= f(2);\n?= f(1);", "checks")
        assert exc_info.value.query == "f(2)"
        assert exc_info.value.source_id == "checks"
        # Rules of the failing source stay loaded.
        assert len(loader.kb.rules_for("f")) == 1
        assert loader.kb.next_inline_query() is None

    def test_inline_queries_disabled(self, registry: ClassRegistry) -> None:
        loader = PolicyLoader(EngineConfig(check_inline_queries=False), registry)
        loader.load_source("?= nothing();")
        assert loader.kb.next_inline_query() is None

    def test_inline_query_sees_registered_classes(self, loader: PolicyLoader, registry: ClassRegistry) -> None:
        class Widget:
            size = 3

        registry.register("Widget", Widget)
        loader.load_source("?= new Widget{}.size = 3;")

    def test_same_source_id_twice_rejected(self, loader: PolicyLoader) -> None:
        loader.load_source("f(1);", "a")
        with pytest.raises(DuplicateSourceError) as exc_info:
            loader.load_source("f(1); f(2);", "a")
        assert exc_info.value.source_id == "a"
        assert len(loader.kb.rules_for("f")) == 1

    def test_same_source_id_after_clear(self, loader: PolicyLoader) -> None:
        loader.load_source("f(1);", "a")
        loader.clear()
        loader.load_source("f(2);", "a")
        assert [r.params[0].term for r in loader.kb.rules_for("f")] == [2]

    def test_anonymous_source_id(self, loader: PolicyLoader) -> None:
        source_id = loader.load_source("f(1);")
        assert source_id.startswith("<string-")


class TestClear:
    """Tests for clear()."""

    def test_clear_drops_rules_and_queue(
        self, loader: PolicyLoader, registry: ClassRegistry, write_policy: WritePolicy
    ) -> None:
        registry.register_constant("LIMIT", 3)
        loader.load_source("f(1);")
        loader.enqueue_file(write_policy("a.polar", "g(1);"))
        loader.clear()
        assert loader.kb.rules_for("f") == []
        assert loader.queued_sources() == []
        assert loader.loaded_sources() == []
        assert registry.constants()["LIMIT"] == 3

    def test_clear_reinstalls_prelude(self, loader: PolicyLoader) -> None:
        loader.clear()
        assert loader.kb.rules_for("role_allows")
        assert loader.kb.builtin("role_inherits", 3) is not None

    def test_prelude_can_be_disabled(self, registry: ClassRegistry) -> None:
        loader = PolicyLoader(EngineConfig(load_roles_prelude=False), registry)
        assert len(loader.kb) == 0
        assert loader.kb.builtin("role_inherits", 3) is None
