"""
Unit tests for error hierarchy.

Tests cover:
- Base GatehouseError behavior
- Load errors with source context
- Registry, marshal and query errors
- Role order errors
- Error serialization
"""

import pytest

from gatehouse.errors import (
    ERROR_LOAD_DUPLICATE_SOURCE,
    ERROR_LOAD_INLINE_QUERY_FAILED,
    ERROR_LOAD_INVALID_EXTENSION,
    ERROR_LOAD_PARSE_FAILED,
    ERROR_LOAD_READ_FAILED,
    ERROR_MARSHAL_FAILED,
    ERROR_QUERY_EXTERNAL_CALL,
    ERROR_QUERY_ILLEGAL_STATE,
    ERROR_QUERY_RUNTIME,
    ERROR_REGISTRY_DUPLICATE,
    ERROR_REGISTRY_UNKNOWN_CONSTRUCTOR,
    ERROR_REGISTRY_UNREGISTERED_CLASS,
    ERROR_ROLE_INVALID_ORDER,
    DuplicateRegistrationError,
    DuplicateSourceError,
    EngineRuntimeError,
    ExternalCallError,
    GatehouseError,
    IllegalStateError,
    InlineQueryFailedError,
    InvalidRoleOrderError,
    InvalidSourceExtensionError,
    LoadError,
    MarshalError,
    PolicyFileReadError,
    PolicyParseError,
    QueryError,
    RegistryError,
    UnknownConstructorError,
    UnregisteredClassError,
)


class TestGatehouseError:
    """Tests for base GatehouseError."""

    def test_basic_error(self) -> None:
        """Create a basic error with message."""
        err = GatehouseError(message="Something went wrong", code=9999)
        assert err.message == "Something went wrong"
        assert err.code == 9999
        assert err.suggestion is None
        assert err.context == {}

    def test_str_format(self) -> None:
        """String format includes code and message."""
        err = GatehouseError(message="Test error", code=1234)
        assert str(err) == "[E1234] Test error"

    def test_str_includes_suggestion(self) -> None:
        err = GatehouseError(message="Failed", code=1, suggestion="Try again")
        assert "Suggestion: Try again" in str(err)

    def test_repr_format(self) -> None:
        """Repr includes class name and details."""
        err = GatehouseError(message="Test", code=1)
        assert "GatehouseError" in repr(err)
        assert "message='Test'" in repr(err)

    def test_to_dict(self) -> None:
        """Convert error to dictionary."""
        err = GatehouseError(message="Test", code=1, suggestion="Hint", context={"foo": "bar"})
        assert err.to_dict() == {
            "error_type": "GatehouseError",
            "message": "Test",
            "code": 1,
            "suggestion": "Hint",
            "context": {"foo": "bar"},
        }

    def test_is_exception(self) -> None:
        """Errors can be raised and caught as GatehouseError."""
        with pytest.raises(GatehouseError):
            raise UnknownConstructorError(name="User")


class TestLoadErrors:
    """Tests for policy loading errors."""

    def test_invalid_extension(self) -> None:
        err = InvalidSourceExtensionError(source_id="policy.txt")
        assert err.code == ERROR_LOAD_INVALID_EXTENSION
        assert "policy.txt" in err.message
        assert ".polar" in err.message
        assert err.context["source_id"] == "policy.txt"
        assert err.context["expected_extension"] == "polar"

    def test_read_failed(self) -> None:
        err = PolicyFileReadError(source_id="a.polar", underlying_error="No such file")
        assert err.code == ERROR_LOAD_READ_FAILED
        assert "No such file" in err.message
        assert isinstance(err, LoadError)

    def test_parse_failed(self) -> None:
        err = PolicyParseError(source_id="a.polar", line=3, column=7, detail="expected ';'")
        assert err.code == ERROR_LOAD_PARSE_FAILED
        assert "line 3, column 7" in err.message
        assert err.context["line"] == 3
        assert err.context["detail"] == "expected ';'"

    def test_inline_query_failed(self) -> None:
        err = InlineQueryFailedError(source_id="a.polar", query="f(1)")
        assert err.code == ERROR_LOAD_INLINE_QUERY_FAILED
        assert "f(1)" in err.message
        assert err.context["query"] == "f(1)"

    def test_duplicate_source(self) -> None:
        err = DuplicateSourceError(source_id="a.polar")
        assert err.code == ERROR_LOAD_DUPLICATE_SOURCE
        assert "a.polar" in err.message
        assert isinstance(err, LoadError)

    def test_custom_message_kept(self) -> None:
        err = InvalidSourceExtensionError(source_id="x", message="custom")
        assert err.message == "custom"


class TestRegistryErrors:
    """Tests for registry errors."""

    def test_duplicate(self) -> None:
        err = DuplicateRegistrationError(name="User", existing="OtherUser")
        assert err.code == ERROR_REGISTRY_DUPLICATE
        assert "User" in err.message
        assert err.context == {"name": "User", "existing": "OtherUser"}
        assert isinstance(err, RegistryError)

    def test_unknown_constructor(self) -> None:
        err = UnknownConstructorError(name="Widget")
        assert err.code == ERROR_REGISTRY_UNKNOWN_CONSTRUCTOR
        assert "Widget" in err.message

    def test_unregistered_class(self) -> None:
        err = UnregisteredClassError(name="Widget")
        assert err.code == ERROR_REGISTRY_UNREGISTERED_CLASS
        assert err.suggestion is not None


class TestOtherErrors:
    """Tests for marshal, query and role errors."""

    def test_marshal(self) -> None:
        err = MarshalError(value="{1: 2}")
        assert err.code == ERROR_MARSHAL_FAILED
        assert err.context["value"] == "{1: 2}"

    def test_illegal_state(self) -> None:
        err = IllegalStateError(query="f(x)", state="pending")
        assert err.code == ERROR_QUERY_ILLEGAL_STATE
        assert "pending" in err.message
        assert err.context == {"query": "f(x)", "state": "pending"}
        assert isinstance(err, QueryError)

    def test_runtime(self) -> None:
        err = EngineRuntimeError(message="boom")
        assert err.code == ERROR_QUERY_RUNTIME
        assert str(err) == "[E4002] boom"

    def test_external_call(self) -> None:
        err = ExternalCallError(attribute="name", underlying_error="KeyError")
        assert err.code == ERROR_QUERY_EXTERNAL_CALL
        assert "'name'" in err.message

    def test_invalid_role_order(self) -> None:
        err = InvalidRoleOrderError(role_order='["a", 1]', reason="role names must be strings")
        assert err.code == ERROR_ROLE_INVALID_ORDER
        assert "role names must be strings" in err.message
        assert err.context["role_order"] == '["a", 1]'

    def test_chained_cause(self) -> None:
        """Wrapping errors keep the original exception as __cause__."""
        original = OSError("disk on fire")
        with pytest.raises(PolicyFileReadError) as exc_info:
            try:
                raise original
            except OSError as e:
                raise PolicyFileReadError(source_id="a.polar", underlying_error=str(e)) from e
        assert exc_info.value.__cause__ is original
