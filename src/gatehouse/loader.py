"""
Policy loader for Gatehouse.

This module provides the PolicyLoader class for:
- Queueing policy files for loading (validated and read eagerly)
- Loading policy source text into the knowledge base
- Checking inline queries (``?= goal;``) embedded in policy source
- Clearing loaded rules while keeping class registrations

Design Decisions:
    - Files are read when queued; the queue holds text snapshots
    - The queue is keyed by source id: queueing the same file again replaces
      its text but keeps its original position
    - The queue is flushed in insertion order before every query
    - A source with a syntax error loads nothing
    - A source whose inline query fails stays loaded; clear() discards it
"""

import logging
import threading
from pathlib import Path

from gatehouse import roles
from gatehouse.errors import InlineQueryFailedError, InvalidSourceExtensionError, PolicyFileReadError
from gatehouse.host import Host
from gatehouse.kernel.knowledge import KnowledgeBase
from gatehouse.query import Query
from gatehouse.registry import ClassRegistry
from gatehouse.schema import EngineConfig, LoadQueueEntry

logger = logging.getLogger(__name__)


class PolicyLoader:
    """
    Loads policy source into a knowledge base.

    Attributes:
        config: Engine configuration (extension, inline checks, depth)
        registry: Class registry used to evaluate inline queries
        kb: The current knowledge base
        _queue: Pending sources by source id, in queueing order
        _lock: Guards the queue and knowledge base swaps

    Example:
        >>> loader = PolicyLoader(EngineConfig(), ClassRegistry())
        >>> loader.enqueue_file("policies/app.polar")
        >>> loader.flush_queue()
    """

    def __init__(self, config: EngineConfig, registry: ClassRegistry) -> None:
        """
        Initialize with an empty knowledge base.

        Args:
            config: Engine configuration
            registry: Class registry for inline-query evaluation
        """
        self.config = config
        self.registry = registry
        self._queue: dict[str, LoadQueueEntry] = {}
        self._lock = threading.RLock()
        self.kb = self._new_knowledge_base()

    def _new_knowledge_base(self) -> KnowledgeBase:
        kb = KnowledgeBase(max_depth=self.config.max_query_depth)
        if self.config.load_roles_prelude:
            roles.install(kb)
        return kb

    # =========================================================================
    # Queue
    # =========================================================================

    def enqueue_file(self, path: Path | str) -> str:
        """
        Validate and snapshot a policy file into the load queue.

        Args:
            path: Path to a policy file

        Returns:
            The source id (the path as given)

        Raises:
            InvalidSourceExtensionError: If the file lacks the policy extension
            PolicyFileReadError: If the file cannot be read
        """
        path = Path(path)
        source_id = str(path)
        extension = self.config.policy_extension

        if path.suffix != f".{extension}":
            raise InvalidSourceExtensionError(source_id=source_id, expected_extension=extension)

        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise PolicyFileReadError(source_id=source_id, underlying_error=str(e)) from e

        with self._lock:
            replaced = source_id in self._queue
            self._queue[source_id] = LoadQueueEntry(source_id=source_id, text=text)
        logger.debug("%s %s in load queue", "Replaced" if replaced else "Queued", source_id)
        return source_id

    def flush_queue(self) -> list[str]:
        """
        Load every queued source in queueing order.

        The queue is emptied before loading starts. If a source fails, the
        sources after it are dropped and the error propagates; sources
        loaded before it stay loaded.

        Returns:
            Source ids that were loaded
        """
        with self._lock:
            entries = list(self._queue.values())
            self._queue.clear()

        loaded = []
        for index, entry in enumerate(entries):
            try:
                self.load_source(entry.text, entry.source_id)
            except Exception:
                dropped = [e.source_id for e in entries[index + 1 :]]
                if dropped:
                    logger.warning("Dropped queued sources after load failure: %s", ", ".join(dropped))
                raise
            loaded.append(entry.source_id)
        return loaded

    def queued_sources(self) -> list[str]:
        """Source ids waiting in the load queue, in order."""
        with self._lock:
            return list(self._queue)

    # =========================================================================
    # Loading
    # =========================================================================

    def load_source(self, text: str, source_id: str | None = None) -> str:
        """
        Load policy source text and check its inline queries.

        Args:
            text: Policy source
            source_id: Name used in error messages (synthetic if omitted)

        Returns:
            The source id the rules were recorded under

        Raises:
            PolicyParseError: If the source is malformed (nothing is loaded)
            DuplicateSourceError: If ``source_id`` is already loaded
            InlineQueryFailedError: If an inline query has no results
        """
        with self._lock:
            kb = self.kb
            before = len(kb)
            source_id = kb.load_str(text, source_id)
            logger.info("Loaded %d rule(s) from %s", len(kb) - before, source_id)
            self._check_inline_queries(kb, source_id)
        return source_id

    def _check_inline_queries(self, kb: KnowledgeBase, source_id: str) -> None:
        try:
            while True:
                inline = kb.next_inline_query()
                if inline is None:
                    return
                if not self.config.check_inline_queries:
                    continue
                host = Host(self.registry.snapshot())
                with Query(kb.new_query_from_term(inline.goal, host), host) as query:
                    if not query.has_next():
                        raise InlineQueryFailedError(source_id=source_id, query=inline.text)
                logger.debug("Inline query passed: %s", inline.text)
        except Exception:
            while kb.next_inline_query() is not None:
                pass
            raise

    def loaded_sources(self) -> list[str]:
        """Source ids loaded into the current knowledge base (prelude excluded)."""
        return [s for s in self.kb.sources if s != roles.ROLES_SOURCE_ID]

    def clear(self) -> None:
        """
        Discard all loaded rules and queued sources.

        Class and constant registrations are kept.
        """
        with self._lock:
            self._queue.clear()
            self.kb = self._new_knowledge_base()
        logger.info("Cleared knowledge base")
