"""
Unit tests for role-hierarchy resolution.

Tests cover:
- Ordered-list inheritance scan
- Role order validation
- The role_inherits builtin, directly and from policies
- Resource role propagation through parent_resource
"""

import pytest

from gatehouse.engine import Gatehouse
from gatehouse.errors import InvalidRoleOrderError
from gatehouse.kernel.terms import Variable
from gatehouse.roles import inherited_roles, role_inherits_builtin, validate_role_order

ORDER = ["OWNER", "WRITER", "READER"]


class TestInheritedRoles:
    """Tests for inherited_roles()."""

    def test_first_inherits_all_after(self) -> None:
        assert inherited_roles("OWNER", ORDER) == ["WRITER", "READER"]

    def test_middle(self) -> None:
        assert inherited_roles("WRITER", ORDER) == ["READER"]

    def test_last_inherits_nothing(self) -> None:
        assert inherited_roles("READER", ORDER) == []

    def test_unknown_role(self) -> None:
        assert inherited_roles("GUEST", ORDER) == []

    def test_empty_order(self) -> None:
        assert inherited_roles("OWNER", []) == []


class TestValidateRoleOrder:
    """Tests for validate_role_order()."""

    def test_valid(self) -> None:
        assert validate_role_order(ORDER) == ORDER
        assert validate_role_order(("A", "B")) == ["A", "B"]

    def test_not_a_list(self) -> None:
        with pytest.raises(InvalidRoleOrderError, match="must be a list"):
            validate_role_order("OWNER")

    def test_non_string_role(self) -> None:
        with pytest.raises(InvalidRoleOrderError, match="must be strings"):
            validate_role_order(["OWNER", 1])

    def test_duplicate_role(self) -> None:
        with pytest.raises(InvalidRoleOrderError, match="duplicate"):
            validate_role_order(["OWNER", "OWNER"])


class TestBuiltin:
    """Tests for the role_inherits builtin."""

    def test_bound_role(self) -> None:
        pairs = [(r, i) for r, i, _ in role_inherits_builtin("WRITER", Variable("x"), ORDER)]
        assert pairs == [("WRITER", "READER")]

    def test_unbound_role_enumerates_all(self) -> None:
        pairs = [(r, i) for r, i, _ in role_inherits_builtin(Variable("r"), Variable("i"), ORDER)]
        assert pairs == [
            ("OWNER", "WRITER"),
            ("OWNER", "READER"),
            ("WRITER", "READER"),
        ]

    def test_from_policy(self, gate: Gatehouse) -> None:
        results = gate.query('role_inherits("OWNER", x, ["OWNER", "WRITER", "READER"])').results()
        assert [r["x"] for r in results] == ["WRITER", "READER"]

    def test_check_mode(self, gate: Gatehouse) -> None:
        assert gate.query('role_inherits("OWNER", "READER", ["OWNER", "WRITER", "READER"])').first() == {}
        assert gate.query('role_inherits("READER", "OWNER", ["OWNER", "WRITER", "READER"])').first() is None

    def test_invalid_order_from_policy(self, gate: Gatehouse) -> None:
        with pytest.raises(InvalidRoleOrderError):
            gate.query('role_inherits("OWNER", x, ["OWNER", 2])').results()


class TestPrelude:
    """Tests for the roles prelude rules over plain data."""

    POLICY = """
    role_order({type: "org"}, ["owner", "member"]);
    role_order({type: "repo"}, ["admin", "reader"]);

    parent_resource(resource: {type: "repo"}, parent) := parent = resource.org;

    has_role(actor, role, resource) :=
        assignment in actor.roles,
        assignment.role = role,
        assignment.resource = resource;

    role_allow("member", "read", _resource: {type: "repo"});
    role_allow("reader", "read", _resource: {type: "repo"});
    role_allow("admin", "push", _resource: {type: "repo"});

    allow(actor, action, resource) := role_allows(actor, action, resource);
    """

    @pytest.fixture
    def org(self) -> dict:
        return {"type": "org", "name": "acme"}

    @pytest.fixture
    def repo(self, org: dict) -> dict:
        return {"type": "repo", "name": "anvil", "org": org}

    def test_resource_role_applies_to(self, gate: Gatehouse, org: dict, repo: dict) -> None:
        gate.load_str(self.POLICY)
        results = gate.query_rule("resource_role_applies_to", repo, Variable("r")).results()
        assert [r["r"] for r in results] == [repo, org]

    def test_inherits_role(self, gate: Gatehouse, repo: dict) -> None:
        gate.load_str(self.POLICY)
        results = gate.query_rule("inherits_role", "admin", Variable("x"), repo).results()
        assert [r["x"] for r in results] == ["reader"]

    def test_direct_role(self, gate: Gatehouse, repo: dict) -> None:
        gate.load_str(self.POLICY)
        actor = {"roles": [{"role": "admin", "resource": repo}]}
        assert gate.is_allowed(actor, "push", repo)

    def test_inherited_role(self, gate: Gatehouse, repo: dict) -> None:
        gate.load_str(self.POLICY)
        actor = {"roles": [{"role": "admin", "resource": repo}]}
        assert gate.is_allowed(actor, "read", repo)

    def test_role_on_parent(self, gate: Gatehouse, org: dict, repo: dict) -> None:
        gate.load_str(self.POLICY)
        actor = {"roles": [{"role": "member", "resource": org}]}
        assert gate.is_allowed(actor, "read", repo)
        assert not gate.is_allowed(actor, "push", repo)

    def test_no_roles(self, gate: Gatehouse, repo: dict) -> None:
        gate.load_str(self.POLICY)
        assert not gate.is_allowed({"roles": []}, "read", repo)
