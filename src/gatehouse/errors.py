"""
Exception hierarchy for Gatehouse.

All Gatehouse exceptions inherit from GatehouseError, allowing callers to
catch all Gatehouse-specific exceptions with a single except clause.

Exception Categories:
    - Load errors: policy source could not be acquired, parsed or validated
    - Registry errors: class/constant registration misuse
    - Marshal errors: a value could not cross the host/engine boundary
    - Query errors: query API misuse or evaluation failure
    - Role errors: malformed role-hierarchy configuration

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (source, class name, query where applicable)
    - Errors are surfaced synchronously and never retried internally
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Load errors: 1xxx
ERROR_LOAD_INVALID_EXTENSION = 1001
ERROR_LOAD_READ_FAILED = 1002
ERROR_LOAD_PARSE_FAILED = 1003
ERROR_LOAD_INLINE_QUERY_FAILED = 1004
ERROR_LOAD_DUPLICATE_SOURCE = 1005

# Registry errors: 2xxx
ERROR_REGISTRY_DUPLICATE = 2001
ERROR_REGISTRY_UNKNOWN_CONSTRUCTOR = 2002
ERROR_REGISTRY_UNREGISTERED_CLASS = 2003

# Marshal errors: 3xxx
ERROR_MARSHAL_FAILED = 3001

# Query errors: 4xxx
ERROR_QUERY_ILLEGAL_STATE = 4001
ERROR_QUERY_RUNTIME = 4002
ERROR_QUERY_EXTERNAL_CALL = 4003

# Role errors: 5xxx
ERROR_ROLE_INVALID_ORDER = 5001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class GatehouseError(Exception):
    """
    Base exception for all Gatehouse errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Load Errors
# =============================================================================


@dataclass
class LoadError(GatehouseError):
    """
    Base class for policy loading errors.

    Attributes:
        source_id: Filename or synthetic name of the offending source
    """

    source_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["source_id"] = self.source_id


@dataclass
class InvalidSourceExtensionError(LoadError):
    """Raised when a policy file does not carry the policy extension."""

    expected_extension: str = "polar"

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Policy files must have the .{self.expected_extension} "
                f"extension: {self.source_id}"
            )
        if self.code == 0:
            self.code = ERROR_LOAD_INVALID_EXTENSION
        if not self.suggestion:
            self.suggestion = f"Rename the file to end in .{self.expected_extension}"
        super().__post_init__()
        self.context["expected_extension"] = self.expected_extension


@dataclass
class PolicyFileReadError(LoadError):
    """Raised when a policy file cannot be opened or read (wraps the OSError)."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to read policy file {self.source_id}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_LOAD_READ_FAILED
        if not self.suggestion:
            self.suggestion = "Check that the file exists and is readable"
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class PolicyParseError(LoadError):
    """Raised when policy source text is malformed."""

    line: int = 0
    column: int = 0
    detail: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            where = self.source_id or "<string>"
            self.message = f"Parse error in {where} at line {self.line}, column {self.column}: {self.detail}"
        if self.code == 0:
            self.code = ERROR_LOAD_PARSE_FAILED
        super().__post_init__()
        self.context.update({
            "line": self.line,
            "column": self.column,
            "detail": self.detail,
        })


@dataclass
class InlineQueryFailedError(LoadError):
    """
    Raised when an inline query (``?= goal;``) embedded in a source has no
    results. Rules of the source stay loaded; call clear() to discard them.
    """

    query: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Inline query failed: {self.query}"
        if self.code == 0:
            self.code = ERROR_LOAD_INLINE_QUERY_FAILED
        if not self.suggestion:
            self.suggestion = "Fix the policy or the inline query, then clear() and reload"
        super().__post_init__()
        self.context["query"] = self.query


@dataclass
class DuplicateSourceError(LoadError):
    """Raised when a source id is loaded again without clearing first."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Source already loaded: {self.source_id}"
        if self.code == 0:
            self.code = ERROR_LOAD_DUPLICATE_SOURCE
        if not self.suggestion:
            self.suggestion = "Call clear() and load every source again to pick up changes"
        super().__post_init__()


# =============================================================================
# Registry Errors
# =============================================================================


@dataclass
class RegistryError(GatehouseError):
    """
    Base class for class registry errors.

    Attributes:
        name: The symbolic name involved
    """

    name: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["name"] = self.name


@dataclass
class DuplicateRegistrationError(RegistryError):
    """Raised when a name is already bound to a different class."""

    existing: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Name already registered: {self.name} (bound to {self.existing})"
        if self.code == 0:
            self.code = ERROR_REGISTRY_DUPLICATE
        if not self.suggestion:
            self.suggestion = "Register the class under a different name"
        super().__post_init__()
        self.context["existing"] = self.existing


@dataclass
class UnknownConstructorError(RegistryError):
    """Raised when an instance is requested for a name without a constructor."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"No constructor registered for: {self.name}"
        if self.code == 0:
            self.code = ERROR_REGISTRY_UNKNOWN_CONSTRUCTOR
        if not self.suggestion:
            self.suggestion = "Pass constructor= when registering the class"
        super().__post_init__()


@dataclass
class UnregisteredClassError(RegistryError):
    """Raised when a policy refers to a class name that was never registered."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unregistered class: {self.name}"
        if self.code == 0:
            self.code = ERROR_REGISTRY_UNREGISTERED_CLASS
        if not self.suggestion:
            self.suggestion = "Call register_class() before querying"
        super().__post_init__()


# =============================================================================
# Marshal Errors
# =============================================================================


@dataclass
class MarshalError(GatehouseError):
    """Raised when a value cannot be converted to or from a term."""

    value: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Cannot convert value: {self.value}"
        if self.code == 0:
            self.code = ERROR_MARSHAL_FAILED
        self.context["value"] = self.value


# =============================================================================
# Query Errors
# =============================================================================


@dataclass
class QueryError(GatehouseError):
    """
    Base class for query errors.

    Attributes:
        query: Text of the query being evaluated (if known)
    """

    query: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["query"] = self.query


@dataclass
class IllegalStateError(QueryError):
    """Raised on Query API misuse, e.g. next() without a prior has_next()."""

    state: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"No result is buffered (query state: {self.state})"
        if self.code == 0:
            self.code = ERROR_QUERY_ILLEGAL_STATE
        if not self.suggestion:
            self.suggestion = "Call has_next() and check it returned True before next()"
        super().__post_init__()
        self.context["state"] = self.state


@dataclass
class EngineRuntimeError(QueryError):
    """Raised when the rule evaluator cannot continue a query."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Query evaluation failed"
        if self.code == 0:
            self.code = ERROR_QUERY_RUNTIME
        super().__post_init__()


@dataclass
class ExternalCallError(QueryError):
    """Raised when a host attribute lookup or method call fails."""

    attribute: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Lookup of {self.attribute!r} failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_QUERY_EXTERNAL_CALL
        super().__post_init__()
        self.context.update({
            "attribute": self.attribute,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Role Errors
# =============================================================================


@dataclass
class InvalidRoleOrderError(GatehouseError):
    """Raised when a role order declaration is not a list of unique strings."""

    role_order: str = ""
    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid role order {self.role_order}: {self.reason}"
        if self.code == 0:
            self.code = ERROR_ROLE_INVALID_ORDER
        if not self.suggestion:
            self.suggestion = 'Declare role_order(resource, ["OWNER", "MEMBER"]) with unique string names'
        self.context.update({
            "role_order": self.role_order,
            "reason": self.reason,
        })
