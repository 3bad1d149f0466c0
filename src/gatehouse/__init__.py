"""
Gatehouse - Embeddable authorization policy engine.

Applications declare authorization rules in the Polar rule language over
their own object model, and Gatehouse answers "is this allowed" queries by
resolving those rules against live application objects.
It provides:
- Policy loading with inline-query checks
- Host class registration and instance construction from policies
- Lazy, multi-result queries
- Role hierarchies with ordered-role inheritance and resource propagation

Example usage:
    gate = Gatehouse()
    gate.register_class(User)
    gate.load_file("authorization.polar")
    gate.is_allowed(user, "read", document)

    $ gatehouse query authorization.polar --goal 'allow("alice", "read", "doc")'
"""

__version__ = "0.1.0"
__author__ = "Gatehouse Contributors"

from gatehouse.engine import Gatehouse
from gatehouse.errors import GatehouseError
from gatehouse.host import Predicate
from gatehouse.kernel.terms import Variable
from gatehouse.query import BindingSet, Query, QueryState
from gatehouse.schema import EngineConfig

__all__ = [
    "__version__",
    "__author__",
    "BindingSet",
    "EngineConfig",
    "Gatehouse",
    "GatehouseError",
    "Predicate",
    "Query",
    "QueryState",
    "Variable",
]
