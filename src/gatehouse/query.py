"""
Query driver for Gatehouse.

A Query is an external iterator over the solutions of one goal. Results
are pulled from the kernel one at a time, so an application that only
needs the first answer never pays for the rest.

State machine:
    PENDING   --has_next(), kernel yields--> BUFFERED
    PENDING   --has_next(), kernel done----> EXHAUSTED
    PENDING   --has_next(), kernel error---> ERRORED (error propagates)
    BUFFERED  --next()-------------------> PENDING

Each result is delivered exactly once, in the kernel's solution order.

Usage:
    query = engine.query("allow(actor, action, resource)")
    while query.has_next():
        bindings = query.next()

    # or
    for bindings in engine.query_rule("allow", user, "read", doc):
        ...
"""

import logging
from enum import Enum
from typing import Any

from gatehouse.errors import IllegalStateError
from gatehouse.host import Host
from gatehouse.kernel.machine import KernelQuery

logger = logging.getLogger(__name__)

BindingSet = dict[str, Any]


class QueryState(str, Enum):
    """Where a Query is in its lifecycle."""

    PENDING = "pending"
    BUFFERED = "buffered"
    EXHAUSTED = "exhausted"
    ERRORED = "errored"


class Query:
    """
    Lazy cursor over the results of one query.

    Attributes:
        state: Current QueryState
        _kernel: The running kernel query
        _host: Evaluation context used to convert results; dropped once the
            query is finished
        _buffered: Result fetched by has_next() and not yet returned
    """

    def __init__(self, kernel_query: KernelQuery, host: Host) -> None:
        self._kernel = kernel_query
        self._host: Host | None = host
        self._buffered: BindingSet | None = None
        self._delivered = 0
        self.state = QueryState.PENDING

    @property
    def text(self) -> str:
        """The goal being evaluated, as policy source."""
        return self._kernel.text

    def has_next(self) -> bool:
        """
        Check whether another result is available, fetching it if needed.

        Returns:
            True if a result is buffered for next()

        Raises:
            GatehouseError: If evaluation fails; the query is then ERRORED
        """
        if self.state is QueryState.BUFFERED:
            return True
        if self.state is not QueryState.PENDING or self._host is None:
            return False

        try:
            result = self._kernel.next_result()
            if result is None:
                self._finish(QueryState.EXHAUSTED)
                return False
            self._buffered = {name: self._host.from_term(term) for name, term in result.items()}
        except Exception:
            self._finish(QueryState.ERRORED)
            raise

        self.state = QueryState.BUFFERED
        return True

    def next(self) -> BindingSet:
        """
        Return the buffered result.

        Raises:
            IllegalStateError: If has_next() has not buffered a result
        """
        if self.state is not QueryState.BUFFERED or self._buffered is None:
            raise IllegalStateError(query=self.text, state=self.state.value)
        result = self._buffered
        self._buffered = None
        self._delivered += 1
        self.state = QueryState.PENDING
        return result

    def first(self) -> BindingSet | None:
        """Return the first result (or None) and close the query."""
        try:
            return self.next() if self.has_next() else None
        finally:
            self.close()

    def results(self) -> list[BindingSet]:
        """Drain every remaining result."""
        return list(self)

    def close(self) -> None:
        """Stop evaluation and release the evaluation context."""
        if self.state in (QueryState.PENDING, QueryState.BUFFERED):
            self._finish(QueryState.EXHAUSTED)

    def _finish(self, state: QueryState) -> None:
        self.state = state
        self._buffered = None
        self._kernel.close()
        self._host = None
        logger.debug("Query %s %s after %d result(s)", self.text, state.value, self._delivered)

    def __iter__(self) -> "Query":
        return self

    def __next__(self) -> BindingSet:
        if not self.has_next():
            raise StopIteration
        return self.next()

    def __enter__(self) -> "Query":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    def __repr__(self) -> str:
        return f"<Query {self.text!r} state={self.state.value}>"
