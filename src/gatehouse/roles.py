"""
Role-hierarchy resolution for Gatehouse.

Role inheritance is declared per resource type as an ordered list, most
privileged first:

    role_order(_: Repository, ["OWNER", "WRITER", "READER"]);

Every role inherits all roles listed after it. Roles also propagate down
resource hierarchies declared with ``parent_resource/2`` facts, so an
OWNER of an organization acts as an OWNER on that organization's
repositories when a ``role_allow`` rule permits it.

This module provides:
    - inherited_roles(): The ordered-list inheritance scan
    - validate_role_order(): Shape check for role order declarations
    - role_inherits_builtin(): The ``role_inherits/3`` kernel builtin
    - ROLES_PRELUDE: Rules wiring the above into ``role_allows/3``
    - install(): Add the builtin and prelude to a knowledge base

Predicates an application supplies:
    role_order(resource, [role, ...])
    parent_resource(resource, parent)
    has_role(actor, role, resource)
    role_allow(role, action, resource)
"""

import logging
from collections.abc import Iterator
from typing import Any

from gatehouse.errors import InvalidRoleOrderError
from gatehouse.kernel.knowledge import KnowledgeBase
from gatehouse.kernel.terms import Variable, to_polar

logger = logging.getLogger(__name__)

ROLES_SOURCE_ID = "<roles>"

ROLES_PRELUDE = """
# A role on a resource applies to the resource itself and, through
# parent_resource facts, to everything below it.
resource_role_applies_to(resource, resource);
resource_role_applies_to(resource, role_resource) :=
    parent_resource(resource, parent),
    resource_role_applies_to(parent, role_resource);

inherits_role(role_name, inherited_name, role_resource) :=
    role_order(role_resource, order),
    role_inherits(role_name, inherited_name, order);

role_allows(actor, action, resource) :=
    resource_role_applies_to(resource, role_resource),
    has_role(actor, role_name, role_resource),
    role_grants(role_name, role_resource, action, resource);

role_grants(role_name, _role_resource, action, resource) :=
    role_allow(role_name, action, resource);
role_grants(role_name, role_resource, action, resource) :=
    inherits_role(role_name, inherited_name, role_resource),
    role_allow(inherited_name, action, resource);
"""


def inherited_roles(role_name: str, role_order: list[str]) -> list[str]:
    """
    Roles inherited by ``role_name``: every role listed after it.

    A role not present in the order inherits nothing.

    Example:
        >>> inherited_roles("WRITER", ["OWNER", "WRITER", "READER"])
        ['READER']
    """
    inherited: list[str] = []
    found = False
    for role in role_order:
        if found:
            inherited.append(role)
        elif role == role_name:
            found = True
    return inherited


def validate_role_order(role_order: Any) -> list[str]:
    """
    Check that a role order is a list of unique role-name strings.

    Returns:
        The role order as a list

    Raises:
        InvalidRoleOrderError: If the order is malformed
    """
    rendered = to_polar(list(role_order) if isinstance(role_order, tuple) else role_order)
    if not isinstance(role_order, (list, tuple)):
        raise InvalidRoleOrderError(role_order=rendered, reason="role order must be a list")

    seen: set[str] = set()
    for role in role_order:
        if not isinstance(role, str):
            raise InvalidRoleOrderError(
                role_order=rendered,
                reason=f"role names must be strings, got {to_polar(role)}",
            )
        if role in seen:
            raise InvalidRoleOrderError(role_order=rendered, reason=f"duplicate role {role!r}")
        seen.add(role)
    return list(role_order)


def role_inherits_builtin(
    role_name: Any,
    inherited_name: Any,
    role_order: Any,
) -> Iterator[tuple[Any, Any, Any]]:
    """
    Kernel builtin ``role_inherits(role_name, inherited_name, role_order)``.

    Yields one (role, inherited, order) tuple per inheritance pair. With
    ``role_name`` unbound it enumerates pairs for every role in the order.
    """
    order = validate_role_order(role_order)
    if isinstance(role_name, Variable):
        roles = order
    elif isinstance(role_name, str):
        roles = [role_name]
    else:
        return
    for role in roles:
        for inherited in inherited_roles(role, order):
            yield role, inherited, role_order


def install(kb: KnowledgeBase) -> None:
    """Register ``role_inherits/3`` and load the roles prelude into ``kb``."""
    kb.register_builtin("role_inherits", 3, role_inherits_builtin)
    kb.load_str(ROLES_PRELUDE, source_id=ROLES_SOURCE_ID)
    logger.debug("Installed roles prelude")
