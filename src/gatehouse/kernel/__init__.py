"""
Rule evaluation kernel for Gatehouse.

The kernel is the self-contained evaluator the binding layer drives. It
knows nothing about host classes; everything it needs from the application
goes through the HostCallbacks protocol.

Components:
    - terms: Term representation (variables, calls, expressions, handles)
    - parser: Polar source and query parsing
    - KnowledgeBase: Rule store, inline-query queue and query factory
    - Machine / KernelQuery: Lazy depth-first goal solving

Primitives used by the binding layer:
    kb.load_str(text, source_id)
    kb.next_inline_query()
    kb.new_query_from_str(text, host)
    kb.new_query_from_term(term, host)
    query.next_result()
"""

from gatehouse.kernel.knowledge import DEFAULT_MAX_DEPTH, Builtin, KnowledgeBase
from gatehouse.kernel.machine import BUILTIN_TYPES, HostCallbacks, KernelQuery, Machine
from gatehouse.kernel.parser import InlineQuery, ParsedSource, parse_query, parse_source
from gatehouse.kernel.terms import (
    Call,
    Expression,
    ExternalInstance,
    InstanceLiteral,
    Operator,
    Pattern,
    Rule,
    Variable,
    to_polar,
)

__all__ = [
    "BUILTIN_TYPES",
    "Builtin",
    "Call",
    "DEFAULT_MAX_DEPTH",
    "Expression",
    "ExternalInstance",
    "HostCallbacks",
    "InlineQuery",
    "InstanceLiteral",
    "KernelQuery",
    "KnowledgeBase",
    "Machine",
    "Operator",
    "ParsedSource",
    "Pattern",
    "Rule",
    "Variable",
    "parse_query",
    "parse_source",
    "to_polar",
]
