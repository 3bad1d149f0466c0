"""
Knowledge base for the Gatehouse kernel.

The knowledge base holds the rules loaded from policy sources, the queue of
inline queries waiting to be checked, and the builtin predicates the host
side installs. It is the kernel's load/query surface:

    kb.load_str(text, source_id)      # parse and add rules
    kb.next_inline_query()            # drain ``?=`` queries one by one
    kb.new_query_from_str(text, host) # KernelQuery over a parsed goal
    kb.new_query_from_term(term, host)

Clearing a knowledge base is done by replacing it with a new one.
"""

import threading
from collections import deque
from collections.abc import Callable, Iterable
from itertools import count
from typing import TYPE_CHECKING, Any

from gatehouse.errors import DuplicateSourceError
from gatehouse.kernel.parser import InlineQuery, parse_query, parse_source
from gatehouse.kernel.terms import Rule

if TYPE_CHECKING:
    from gatehouse.kernel.machine import HostCallbacks, KernelQuery

# A builtin receives its (substituted) arguments and yields tuples of terms,
# one tuple per solution, which are unified with the call arguments.
Builtin = Callable[..., Iterable[tuple[Any, ...]]]

DEFAULT_MAX_DEPTH = 100

_anonymous_sources = count(1)


class KnowledgeBase:
    """
    Rule store and query factory.

    Attributes:
        max_depth: Rule-application depth after which queries fail
        _rules: Rules by predicate name, in load order
        _inline_queries: Inline queries not yet handed out
        _builtins: Builtin predicates by (name, arity)
        _sources: Source ids loaded so far, in load order
    """

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.max_depth = max_depth
        self._rules: dict[str, list[Rule]] = {}
        self._inline_queries: deque[InlineQuery] = deque()
        self._builtins: dict[tuple[str, int], Builtin] = {}
        self._sources: list[str] = []
        self._lock = threading.Lock()

    # =========================================================================
    # Loading
    # =========================================================================

    def load_str(self, text: str, source_id: str | None = None) -> str:
        """
        Parse ``text`` and add its rules.

        Parsing happens before anything is added, so a source with a syntax
        error contributes nothing.

        Returns:
            The source id the rules were recorded under

        Raises:
            PolicyParseError: If the text is malformed
            DuplicateSourceError: If ``source_id`` is already loaded
        """
        if source_id is None:
            source_id = f"<string-{next(_anonymous_sources)}>"
        parsed = parse_source(text, source_id)
        with self._lock:
            if source_id in self._sources:
                raise DuplicateSourceError(source_id=source_id)
            for rule in parsed.rules:
                self._rules.setdefault(rule.name, []).append(rule)
            self._inline_queries.extend(parsed.inline_queries)
            self._sources.append(source_id)
        return source_id

    def next_inline_query(self) -> InlineQuery | None:
        """Pop the next unchecked inline query, or None when drained."""
        with self._lock:
            if self._inline_queries:
                return self._inline_queries.popleft()
        return None

    def register_builtin(self, name: str, arity: int, fn: Builtin) -> None:
        """Install a host-implemented predicate."""
        self._builtins[(name, arity)] = fn

    # =========================================================================
    # Lookup
    # =========================================================================

    def rules_for(self, name: str) -> list[Rule]:
        """Rules for a predicate name, in declaration order."""
        with self._lock:
            return list(self._rules.get(name, ()))

    def builtin(self, name: str, arity: int) -> Builtin | None:
        return self._builtins.get((name, arity))

    @property
    def sources(self) -> list[str]:
        return list(self._sources)

    def __len__(self) -> int:
        """Number of rules loaded."""
        return sum(len(rules) for rules in self._rules.values())

    # =========================================================================
    # Queries
    # =========================================================================

    def new_query_from_str(self, text: str, host: "HostCallbacks") -> "KernelQuery":
        """Parse ``text`` as a goal and start a query over it."""
        from gatehouse.kernel.machine import KernelQuery

        return KernelQuery(self, parse_query(text), host, text=text)

    def new_query_from_term(self, goal: Any, host: "HostCallbacks") -> "KernelQuery":
        """Start a query over an already-built goal term."""
        from gatehouse.kernel.machine import KernelQuery

        return KernelQuery(self, goal, host)
