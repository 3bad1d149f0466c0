"""
Gatehouse engine facade.

The Gatehouse class is the application's entry point. It coordinates:
- Class Registry: Host classes and constants visible to policies
- Policy Loader: Load queue, knowledge base, inline-query checks
- Query Driver: Lazy result iteration over a fresh evaluation context

Query Flow:
    1. Flush the load queue (files queued since the last query)
    2. Snapshot the registry into a new evaluation context (Host)
    3. Marshal query arguments into terms
    4. Start a kernel query and hand back a lazy Query

Design Principles:
    - Every query has its own evaluation context; handles never leak
      between queries
    - Registrations made after a query starts are invisible to it
    - Errors surface synchronously to the caller and are never retried
"""

import logging
from pathlib import Path
from typing import Any

from gatehouse.host import Host
from gatehouse.kernel.terms import Call
from gatehouse.loader import PolicyLoader
from gatehouse.query import Query
from gatehouse.registry import ClassRegistry, Constructor
from gatehouse.schema import EngineConfig

logger = logging.getLogger(__name__)


class Gatehouse:
    """
    Authorization policy engine.

    Usage:
        gate = Gatehouse()
        gate.register_class(User)
        gate.register_class(Repository)
        gate.load_file("authorization.polar")
        if gate.is_allowed(user, "read", repo):
            ...

    Attributes:
        config: Engine configuration
        registry: Class and constant registry
        loader: Policy loader owning the knowledge base
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        registry: ClassRegistry | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            config: Engine configuration (defaults to EngineConfig())
            registry: Class registry (defaults to a new, empty one)
        """
        self.config = config or EngineConfig()
        self.registry = registry or ClassRegistry()
        self.loader = PolicyLoader(self.config, self.registry)

    # =========================================================================
    # Registration
    # =========================================================================

    def register_class(
        self,
        cls: type,
        name: str | None = None,
        constructor: Constructor | None = None,
    ) -> str:
        """
        Make a host class available to policies.

        Args:
            cls: The class to register
            name: Name used in policies (defaults to the class name)
            constructor: Factory for ``Name{...}`` literals (defaults to cls).
                It is called with the literal's fields as keyword arguments,
                so ``Name{a: 1, b: 2}`` calls ``constructor(a=1, b=2)``

        Returns:
            The name the class was registered under

        Raises:
            DuplicateRegistrationError: If the name is bound to a different class
        """
        name = name or cls.__name__
        self.registry.register(name, cls, constructor)
        logger.debug("Registered class %s as %s", cls.__qualname__, name)
        return name

    def register_constant(self, name: str, value: Any) -> None:
        """Bind a named constant for use in policies and queries."""
        self.registry.register_constant(name, value)

    # =========================================================================
    # Loading
    # =========================================================================

    def load_file(self, path: Path | str) -> None:
        """
        Queue a policy file for loading.

        The file is validated and read now; its rules are loaded before
        the next query runs. Queueing a file that is already loaded makes
        that flush fail with DuplicateSourceError; clear() first to reload.

        Raises:
            InvalidSourceExtensionError: If the file lacks the policy extension
            PolicyFileReadError: If the file cannot be read
        """
        self.loader.enqueue_file(path)

    def load_str(self, text: str, source_id: str | None = None) -> str:
        """
        Load policy source text immediately.

        Returns:
            The source id the rules were recorded under

        Raises:
            PolicyParseError: If the text is malformed
            DuplicateSourceError: If ``source_id`` is already loaded
            InlineQueryFailedError: If an inline query has no results
        """
        return self.loader.load_source(text, source_id)

    def clear(self) -> None:
        """Discard loaded rules and queued files; registrations are kept."""
        self.loader.clear()

    # =========================================================================
    # Queries
    # =========================================================================

    def query(self, goal: Any) -> Query:
        """
        Query with a goal given as policy source text or as a host value.

        Args:
            goal: Query text such as ``"allow(x, \\"read\\", y)"``, or a
                Predicate built on the host side

        Returns:
            A lazy Query over the results
        """
        host = self._begin_query()
        kb = self.loader.kb
        if isinstance(goal, str):
            kernel_query = kb.new_query_from_str(goal, host)
        else:
            kernel_query = kb.new_query_from_term(host.to_term(goal), host)
        return Query(kernel_query, host)

    def query_rule(self, name: str, *args: Any) -> Query:
        """
        Query a rule by name with host values as arguments.

        Pass Variable("x") as an argument to have ``x`` bound in results.

        Returns:
            A lazy Query over the results
        """
        host = self._begin_query()
        goal = Call(name, tuple(host.to_term(arg) for arg in args))
        return Query(self.loader.kb.new_query_from_term(goal, host), host)

    def is_allowed(self, actor: Any, action: Any, resource: Any) -> bool:
        """True when ``allow(actor, action, resource)`` has at least one result."""
        with self.query_rule("allow", actor, action, resource) as query:
            return query.has_next()

    def _begin_query(self) -> Host:
        self.loader.flush_queue()
        return Host(self.registry.snapshot())
