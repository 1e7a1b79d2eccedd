"""Unit tests for role resolution."""

from __future__ import annotations

import uuid

import pytest

from idbridge.core.identity import ClaimSet
from idbridge.core.rbac import (
    MappingSourceType,
    RoleMapping,
    default_permissions,
    match_mapping,
    resolve_roles,
)

TENANT_ID = uuid.uuid4()


def make_mapping(
    source_value: str,
    target_role: str,
    priority: int = 100,
    source_type: MappingSourceType = MappingSourceType.GROUP,
    **fields: object,
) -> RoleMapping:
    """Build an enabled mapping."""
    values: dict[str, object] = {
        "id": uuid.uuid4(),
        "tenant_id": TENANT_ID,
        "name": f"{source_value} -> {target_role}",
        "source_type": source_type,
        "source_value": source_value,
        "target_role": target_role,
        "priority": priority,
        "is_enabled": True,
    }
    values.update(fields)
    return RoleMapping(**values)  # type: ignore[arg-type]


class TestMatchMapping:
    """Tests for single mapping evaluation."""

    def test_exact_match_ignores_case(self) -> None:
        """Test that group names compare case-insensitively."""
        mapping = make_mapping("Admins", "ADMIN")

        assert match_mapping(mapping, ClaimSet(groups=["admins"])) == "admins"

    def test_pattern_is_case_insensitive_search(self) -> None:
        """Test that patterns are searched without regard to case."""
        mapping = make_mapping("eng", "MANAGER", source_pattern=r"^eng-")

        assert match_mapping(mapping, ClaimSet(groups=["Sales", "ENG-Platform"])) == (
            "ENG-Platform"
        )

    def test_role_mapping_reads_roles(self) -> None:
        """Test that role mappings ignore groups."""
        mapping = make_mapping("admin", "ADMIN", source_type=MappingSourceType.ROLE)

        assert match_mapping(mapping, ClaimSet(groups=["admin"])) is None
        assert match_mapping(mapping, ClaimSet(roles=["admin"])) == "admin"

    def test_attribute_mapping_with_pattern(self) -> None:
        """Test that attribute mappings test the named attribute's values."""
        mapping = make_mapping(
            "department",
            "ANALYST",
            source_type=MappingSourceType.ATTRIBUTE,
            source_pattern=r"^finance$",
        )

        assert match_mapping(mapping, ClaimSet(attributes={"department": "Finance"})) == (
            "Finance"
        )
        assert match_mapping(mapping, ClaimSet(attributes={"department": "Sales"})) is None

    def test_attribute_mapping_without_pattern_ignores_presence(self) -> None:
        """Test that an attribute mapping without pattern does not match any value."""
        mapping = make_mapping("costCenter", "ANALYST", source_type=MappingSourceType.ATTRIBUTE)

        assert match_mapping(mapping, ClaimSet(attributes={"costCenter": ["CC-1"]})) is None
        assert match_mapping(mapping, ClaimSet(attributes={"costCenter": ""})) is None
        assert match_mapping(mapping, ClaimSet(attributes={})) is None

    def test_attribute_scalars_are_stringified(self) -> None:
        """Test that numeric and boolean attributes are matched as strings."""
        level = make_mapping(
            "level", "ADMIN", source_type=MappingSourceType.ATTRIBUTE, source_pattern=r"^7$"
        )
        contractor = make_mapping(
            "contractor",
            "GUEST",
            source_type=MappingSourceType.ATTRIBUTE,
            source_pattern=r"^true$",
        )
        claims = ClaimSet(attributes={"level": 7, "contractor": True})  # type: ignore[dict-item]

        assert match_mapping(level, claims) == "7"
        assert match_mapping(contractor, claims) == "true"

    def test_attribute_objects_are_ignored(self) -> None:
        """Test that nested objects and non-string list items never match."""
        mapping = make_mapping(
            "manager", "MANAGER", source_type=MappingSourceType.ATTRIBUTE, source_pattern=r"."
        )
        claims = ClaimSet(
            attributes={"manager": {"id": "m1"}, "codes": [1, 2]}  # type: ignore[dict-item]
        )

        codes = make_mapping(
            "codes", "ADMIN", source_type=MappingSourceType.ATTRIBUTE, source_pattern=r"."
        )

        assert match_mapping(codes, claims) is None
        assert match_mapping(mapping, claims) is None
        assert resolve_roles([mapping], claims).roles == ["USER"]


class TestResolveRoles:
    """Tests for resolve_roles."""

    def test_all_matches_accumulate_in_priority_order(self) -> None:
        """Test that a user in an admin and a catch-all group gets both roles."""
        everyone = make_mapping("Everyone", "USER", priority=10)
        admins = make_mapping("Admins", "ADMIN", priority=1)

        result = resolve_roles([everyone, admins], ClaimSet(groups=["Everyone", "Admins"]))

        assert result.roles == ["ADMIN", "USER"]
        assert [a.mapping_id for a in result.mappings_applied] == [admins.id, everyone.id]
        assert result.used_fallback is False
        assert result.permissions[: len(default_permissions("ADMIN"))] == list(
            default_permissions("ADMIN")
        )
        assert len(result.permissions) == len(set(result.permissions))

    def test_fallback_when_nothing_matches(self) -> None:
        """Test that the default role applies when no mapping matches."""
        result = resolve_roles(
            [make_mapping("Admins", "ADMIN")], ClaimSet(groups=["Contractors"]), "VIEWER"
        )

        assert result.roles == ["VIEWER"]
        assert result.permissions == list(default_permissions("VIEWER"))
        assert result.mappings_applied == []
        assert result.used_fallback is True

    def test_disabled_mappings_are_skipped(self) -> None:
        """Test that disabled mappings never fire."""
        mapping = make_mapping("Admins", "ADMIN", is_enabled=False)

        result = resolve_roles([mapping], ClaimSet(groups=["Admins"]))

        assert result.roles == ["USER"]
        assert result.used_fallback is True

    def test_equal_priorities_keep_stored_order(self) -> None:
        """Test that ties are broken by stored order."""
        first = make_mapping("Team", "MANAGER", priority=5)
        second = make_mapping("Team", "ANALYST", priority=5)

        result = resolve_roles([first, second], ClaimSet(groups=["Team"]))

        assert result.roles == ["MANAGER", "ANALYST"]

    def test_duplicate_roles_are_collapsed(self) -> None:
        """Test that two mappings to the same role yield it once."""
        result = resolve_roles(
            [make_mapping("A", "ADMIN", priority=1), make_mapping("B", "ADMIN", priority=2)],
            ClaimSet(groups=["A", "B"]),
        )

        assert result.roles == ["ADMIN"]
        assert len(result.mappings_applied) == 2

    def test_target_permissions_come_first(self) -> None:
        """Test that extra permissions are merged with the role defaults."""
        mapping = make_mapping(
            "Auditors", "VIEWER", target_permissions=["audit:read", "entities:read"]
        )

        result = resolve_roles([mapping], ClaimSet(groups=["Auditors"]))

        assert result.permissions == ["audit:read", "entities:read", "reports:read"]

    def test_custom_role_has_no_default_permissions(self) -> None:
        """Test that custom roles only carry their mapped permissions."""
        mapping = make_mapping("Ops", "OPERATOR", target_permissions=["runs:write"])

        result = resolve_roles([mapping], ClaimSet(groups=["Ops"]))

        assert result.roles == ["OPERATOR"]
        assert result.permissions == ["runs:write"]

    def test_invalid_pattern_is_skipped(self) -> None:
        """Test that a stored mapping with a broken regex does not abort resolution."""
        broken = make_mapping("x", "ADMIN", priority=1, source_pattern="([")
        valid = make_mapping("Everyone", "USER", priority=2)

        result = resolve_roles([broken, valid], ClaimSet(groups=["Everyone"]))

        assert result.roles == ["USER"]
        assert result.used_fallback is False

    @pytest.mark.parametrize(
        ("groups", "expected"),
        [
            (["Admins"], ["ADMIN"]),
            (["Everyone"], ["USER"]),
            ([], ["VIEWER"]),
        ],
    )
    def test_resolution_table(self, groups: list[str], expected: list[str]) -> None:
        """Test resolution across typical group sets."""
        mappings = [
            make_mapping("Admins", "ADMIN", priority=1),
            make_mapping("Everyone", "USER", priority=10),
        ]

        assert resolve_roles(mappings, ClaimSet(groups=groups), "VIEWER").roles == expected
