"""
Tests 101-130: Role Resolver --- inheritance, cycles, dangling references and
custom permission overrides.
"""
import logging
import uuid

import pytest

from familyhub.rbac.errors import ConfigurationError
from familyhub.rbac.legacy import legacy_baseline
from familyhub.rbac.resolver import (
    merge_role_chain,
    resolve_effective_privileges,
    resolve_role_chain,
)
from familyhub.rbac.roles import build_role
from familyhub.rbac.subjects import CustomPermission, UserAccess
from familyhub.rbac.vocabulary import AccessLevel, EntityKind, LegacyRole, PrivilegeKind, SpecialPermission

FAMILY = uuid.uuid4()


def _role(name, parent=None, **kwargs):
    return build_role(name=name, family_id=FAMILY, parent_role_id=parent, **kwargs)


def _roles(*roles):
    return {r.id: r for r in roles}


def _user(role=None, legacy=LegacyRole.FAMILY_MEMBER, overrides=()):
    return UserAccess(
        id=uuid.uuid4(),
        role=legacy,
        family_id=FAMILY,
        security_role_id=role.id if role else None,
        custom_permissions=tuple(CustomPermission(k, v) for k, v in overrides),
    )


class TestRoleResolver:

    # =================================================================
    # Tests 101-106: legacy fallback
    # =================================================================

    def test_101_no_security_role_uses_legacy_baseline(self):
        """Users without a security role get their legacy baseline."""
        user = _user(legacy=LegacyRole.FAMILY_ADMIN)
        effective = resolve_effective_privileges(user)
        baseline = legacy_baseline(LegacyRole.FAMILY_ADMIN)
        assert effective.grid == baseline.entity_privileges
        assert effective.has_special(SpecialPermission.MANAGE_USERS)

    def test_102_dangling_role_falls_back_with_warning(self, caplog):
        """A missing security role logs a warning and uses the legacy baseline."""
        user = UserAccess(id=uuid.uuid4(), role=LegacyRole.GUEST, security_role_id=uuid.uuid4())
        with caplog.at_level(logging.WARNING, logger="familyhub.rbac.resolver"):
            effective = resolve_effective_privileges(user, {})
        assert effective.grid == legacy_baseline(LegacyRole.GUEST).entity_privileges
        assert "missing security role" in caplog.text

    def test_103_legacy_users_ignore_custom_overrides(self):
        """Overrides do not apply on top of the legacy baseline."""
        user = _user(legacy=LegacyRole.GUEST, overrides=[("special:canManageRoles", True)])
        assert not resolve_effective_privileges(user).has_special(SpecialPermission.MANAGE_ROLES)

    def test_104_unknown_legacy_role_treated_as_guest(self):
        """An unknown legacy role resolves like a guest."""
        assert legacy_baseline("superhero") == legacy_baseline(LegacyRole.GUEST)

    def test_105_role_of_another_family_falls_back_with_warning(self, caplog):
        """A family role left over from a previous family is ignored."""
        role = _role("Old family admins", special_permissions={"canManageRoles": True})
        user = UserAccess(
            id=uuid.uuid4(),
            role=LegacyRole.FAMILY_MEMBER,
            family_id=uuid.uuid4(),
            security_role_id=role.id,
        )
        with caplog.at_level(logging.WARNING, logger="familyhub.rbac.resolver"):
            effective = resolve_effective_privileges(user, _roles(role))
        assert not effective.has_special(SpecialPermission.MANAGE_ROLES)
        assert effective.grid == legacy_baseline(LegacyRole.FAMILY_MEMBER).entity_privileges
        assert "of family" in caplog.text

    def test_106_system_role_applies_regardless_of_family(self):
        """System roles are not tied to the user's family."""
        role = build_role(
            name="Platform editors", is_system_role=True,
            entity_privileges={"news": {"write": "global"}},
        )
        user = UserAccess(id=uuid.uuid4(), role=LegacyRole.GUEST, security_role_id=role.id)
        effective = resolve_effective_privileges(user, _roles(role))
        assert effective.level(EntityKind.NEWS, PrivilegeKind.WRITE) is AccessLevel.GLOBAL

    # =================================================================
    # Tests 110-118: inheritance
    # =================================================================

    def test_110_single_role_is_its_own_grid(self):
        """A role without a parent resolves to its own grid."""
        role = _role("Solo", entity_privileges={"news": {"read": "family"}})
        effective = resolve_effective_privileges(_user(role), _roles(role))
        assert effective.grid == role.entity_privileges

    def test_111_child_inherits_undeclared_rows(self):
        """Rows the child does not declare come from the parent."""
        parent = _role("Parent", entity_privileges={"news": {"read": "global"}})
        child = _role("Child", parent=parent.id, entity_privileges={"event": {"create": "user"}})
        effective = resolve_effective_privileges(_user(child), _roles(parent, child))
        assert effective.level(EntityKind.NEWS, PrivilegeKind.READ) is AccessLevel.GLOBAL
        assert effective.level(EntityKind.EVENT, PrivilegeKind.CREATE) is AccessLevel.USER

    def test_112_child_row_overrides_parent_row_even_when_narrower(self):
        """A declared child row wins even when it grants less."""
        parent = _role("Parent", entity_privileges={"news": {"read": "global", "write": "family"}})
        child = _role("Child", parent=parent.id, entity_privileges={"news": {"read": "user"}})
        effective = resolve_effective_privileges(_user(child), _roles(parent, child))
        assert effective.level(EntityKind.NEWS, PrivilegeKind.READ) is AccessLevel.USER
        # The whole row is the child's; write is none there.
        assert effective.level(EntityKind.NEWS, PrivilegeKind.WRITE) is AccessLevel.NONE

    def test_113_nearest_declaring_ancestor_wins(self):
        """The closest ancestor declaring a row supplies it."""
        root = _role("Root", entity_privileges={"gallery": {"read": "global"}})
        middle = _role("Middle", parent=root.id, entity_privileges={"gallery": {"read": "family"}})
        leaf = _role("Leaf", parent=middle.id)
        effective = resolve_effective_privileges(_user(leaf), _roles(root, middle, leaf))
        assert effective.level(EntityKind.GALLERY, PrivilegeKind.READ) is AccessLevel.FAMILY

    def test_114_special_flags_inherit_per_key(self):
        """Special flags are inherited one key at a time."""
        parent = _role("Parent", special_permissions={"canApproveContent": True, "canImportData": True})
        child = _role("Child", parent=parent.id, special_permissions={"canImportData": False})
        effective = resolve_effective_privileges(_user(child), _roles(parent, child))
        assert effective.has_special(SpecialPermission.APPROVE_CONTENT)
        assert not effective.has_special(SpecialPermission.IMPORT_DATA)

    def test_115_chain_order_is_leaf_first(self):
        """The resolved chain starts at the user's own role."""
        root = _role("Root")
        leaf = _role("Leaf", parent=root.id)
        chain = resolve_role_chain(leaf.id, _roles(root, leaf))
        assert [r.name for r in chain] == ["Leaf", "Root"]

    def test_116_dangling_parent_ends_chain(self, caplog):
        """A missing parent ends the chain with a warning."""
        leaf = _role("Leaf", parent=uuid.uuid4(), entity_privileges={"news": {"read": "user"}})
        with caplog.at_level(logging.WARNING, logger="familyhub.rbac.resolver"):
            effective = resolve_effective_privileges(_user(leaf), _roles(leaf))
        assert effective.level(EntityKind.NEWS, PrivilegeKind.READ) is AccessLevel.USER
        assert "missing parent role" in caplog.text

    def test_117_inheritance_cycle_raises(self):
        """A parent cycle raises ConfigurationError."""
        a_id, b_id = uuid.uuid4(), uuid.uuid4()
        a = build_role(name="A", role_id=a_id, family_id=FAMILY, parent_role_id=b_id)
        b = build_role(name="B", role_id=b_id, family_id=FAMILY, parent_role_id=a_id)
        with pytest.raises(ConfigurationError):
            resolve_effective_privileges(_user(a), _roles(a, b))

    def test_118_merge_of_empty_chain_is_nothing(self):
        """Merging no roles grants nothing."""
        merged = merge_role_chain([])
        assert all(level is AccessLevel.NONE for _, _, level in merged.grid.cells())

    # =================================================================
    # Tests 120-128: custom overrides
    # =================================================================

    def test_120_entity_grant_means_global(self):
        """A granted entity override opens the cell globally."""
        role = _role("Base", entity_privileges={"news": {"read": "user"}})
        user = _user(role, overrides=[("entity:news:read", True)])
        effective = resolve_effective_privileges(user, _roles(role))
        assert effective.level(EntityKind.NEWS, PrivilegeKind.READ) is AccessLevel.GLOBAL

    def test_121_entity_denial_means_none(self):
        """A denied entity override closes the cell."""
        role = _role("Base", entity_privileges={"news": {"read": "global"}})
        user = _user(role, overrides=[("news:read", False)])
        effective = resolve_effective_privileges(user, _roles(role))
        assert effective.level(EntityKind.NEWS, PrivilegeKind.READ) is AccessLevel.NONE

    def test_122_special_overrides(self):
        """Special overrides grant and revoke individual flags."""
        role = _role("Base", special_permissions={"canApproveContent": True})
        user = _user(role, overrides=[
            ("special:canApproveContent", False),
            ("special:canSendNotifications", True),
        ])
        effective = resolve_effective_privileges(user, _roles(role))
        assert not effective.has_special(SpecialPermission.APPROVE_CONTENT)
        assert effective.has_special(SpecialPermission.SEND_NOTIFICATIONS)

    def test_123_overrides_beat_inherited_values(self):
        """Overrides apply after inheritance and win."""
        parent = _role("Parent", entity_privileges={"event": {"delete": "global"}})
        child = _role("Child", parent=parent.id)
        user = _user(child, overrides=[("event:delete", False)])
        effective = resolve_effective_privileges(user, _roles(parent, child))
        assert effective.level(EntityKind.EVENT, PrivilegeKind.DELETE) is AccessLevel.NONE

    def test_124_last_write_wins_for_same_key(self):
        """The last override for a key decides."""
        role = _role("Base")
        user = _user(role, overrides=[("news:write", True), ("news:write", False)])
        effective = resolve_effective_privileges(user, _roles(role))
        assert effective.level(EntityKind.NEWS, PrivilegeKind.WRITE) is AccessLevel.NONE

    def test_125_unknown_override_keys_are_skipped(self):
        """Unknown override keys change nothing."""
        role = _role("Base", entity_privileges={"news": {"read": "family"}})
        user = _user(role, overrides=[("spaceship:fly", True)])
        effective = resolve_effective_privileges(user, _roles(role))
        assert effective.grid == role.entity_privileges

    def test_126_resolution_is_deterministic(self):
        """Resolving twice gives the same result."""
        parent = _role("Parent", entity_privileges={"news": {"read": "global"}})
        child = _role("Child", parent=parent.id)
        user = _user(child, overrides=[("special:canImportData", True)])
        roles = _roles(parent, child)
        assert resolve_effective_privileges(user, roles) == resolve_effective_privileges(user, roles)
