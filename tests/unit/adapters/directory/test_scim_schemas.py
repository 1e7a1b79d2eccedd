"""Unit tests for SCIM resource parsing."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from idbridge.adapters.directory.scim_schemas import (
    SCIM_ENTERPRISE_USER_SCHEMA,
    SCIM_PATCH_SCHEMA,
    SCIMGroup,
    SCIMGroupMember,
    SCIMListResponse,
    SCIMName,
    SCIMPatchOp,
    SCIMUser,
    SCIMUserEmail,
    parse_patch_request,
    parse_timestamp,
)


class TestSCIMUser:
    """Tests for SCIMUser parsing."""

    def test_full_resource(self) -> None:
        """Test a user with name, emails, roles and enterprise extension."""
        user = SCIMUser.from_dict(
            {
                "id": "2819c223",
                "userName": "bjensen",
                "name": {"formatted": "Ms. Barbara Jensen", "givenName": "Barbara"},
                "emails": [
                    {"value": "home@example.com", "type": "home"},
                    {"value": "bjensen@example.com", "primary": True},
                ],
                "roles": [{"value": "Auditor"}],
                "groups": [{"value": "g1", "display": "Finance"}],
                "title": "Tour Guide",
                SCIM_ENTERPRISE_USER_SCHEMA: {
                    "department": "Tour Operations",
                    "manager": {"value": "26118915"},
                },
                "meta": {"lastModified": "2026-01-15T08:00:00Z"},
            }
        )

        record = user.to_directory_user()

        assert record.external_id == "2819c223"
        assert record.email == "bjensen@example.com"
        assert record.display_name == "Ms. Barbara Jensen"
        assert record.first_name == "Barbara"
        assert record.roles == ["Auditor"]
        assert record.groups == ["Finance"]
        assert record.attributes == {
            "title": "Tour Guide",
            "department": "Tour Operations",
            "manager": "26118915",
        }
        assert record.last_modified == datetime(2026, 1, 15, 8, tzinfo=UTC)

    def test_minimal_resource(self) -> None:
        """Test that the user name stands in for a missing email."""
        record = SCIMUser.from_dict({"id": "u1", "userName": "jdoe"}).to_directory_user()

        assert record.email == "jdoe"
        assert record.active is True
        assert record.display_name is None

    def test_first_email_without_primary(self) -> None:
        """Test that the first email is used when none is primary."""
        user = SCIMUser.from_dict(
            {"id": "u1", "userName": "jdoe", "emails": [{"value": "a@example.com"}]}
        )

        assert user.primary_email == "a@example.com"

    def test_missing_user_name(self) -> None:
        """Test that userName is required."""
        with pytest.raises(KeyError):
            SCIMUser.from_dict({"id": "u1"})


class TestSCIMGroup:
    """Tests for SCIMGroup parsing."""

    def test_members(self) -> None:
        """Test that only user members become member IDs."""
        group = SCIMGroup.from_dict(
            {
                "id": "g1",
                "displayName": "Admins",
                "externalId": "ext-g1",
                "members": [
                    {"value": "u1"},
                    {"value": "u2", "type": "User"},
                    {"value": "g2", "type": "Group"},
                    {"display": "no value"},
                ],
            }
        )

        record = group.to_directory_group()

        assert record.member_ids == ["u1", "u2"]
        assert record.attributes == {"externalId": "ext-g1"}


class TestSCIMListResponse:
    """Tests for SCIMListResponse parsing."""

    def test_page(self) -> None:
        """Test the paging fields."""
        page = SCIMListResponse.from_dict(
            {"totalResults": 5, "startIndex": 3, "itemsPerPage": 2, "Resources": [{}, {}]}
        )

        assert page.total_results == 5
        assert page.start_index == 3
        assert len(page.resources) == 2

    def test_total_defaults_to_page_length(self) -> None:
        """Test a response without totalResults."""
        page = SCIMListResponse.from_dict({"Resources": [{"id": "u1"}]})

        assert page.total_results == 1


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    @pytest.mark.parametrize("value", [None, "", 42, "last tuesday"])
    def test_invalid_values(self, value: object) -> None:
        """Test that unusable values parse to None."""
        assert parse_timestamp(value) is None


class TestRendering:
    """Tests for rendering resources as SCIM JSON."""

    def test_user_to_dict(self) -> None:
        """Test core fields, enterprise attributes and meta of a rendered user."""
        user = SCIMUser(
            id="6f1c",
            user_name="bjensen",
            name=SCIMName(given_name="Barbara", family_name="Jensen"),
            emails=[SCIMUserEmail(value="bjensen@example.com", primary=True)],
            external_id="okta-1",
            attributes={"title": "Tour Guide", "department": "Tours", "userName": "bjensen"},
            created=datetime(2026, 1, 15, 8, tzinfo=UTC),
            location="https://app.example.com/scim/v2/Users/6f1c",
        )

        data = user.to_dict()

        assert data["schemas"] == [
            "urn:ietf:params:scim:schemas:core:2.0:User",
            SCIM_ENTERPRISE_USER_SCHEMA,
        ]
        assert data["userName"] == "bjensen"
        assert data["name"] == {"givenName": "Barbara", "familyName": "Jensen"}
        assert data["emails"] == [
            {"value": "bjensen@example.com", "primary": True, "type": "work"}
        ]
        assert data["title"] == "Tour Guide"
        assert data[SCIM_ENTERPRISE_USER_SCHEMA] == {"department": "Tours"}
        assert "userName" not in data[SCIM_ENTERPRISE_USER_SCHEMA]
        assert data["meta"] == {
            "resourceType": "User",
            "created": "2026-01-15T08:00:00+00:00",
            "location": "https://app.example.com/scim/v2/Users/6f1c",
        }

    def test_group_to_dict(self) -> None:
        """Test that members are always present on a rendered group."""
        group = SCIMGroup(
            id="g1",
            display_name="Admins",
            members=[SCIMGroupMember(value="u1", display="Jane")],
        )

        data = group.to_dict()

        assert data["members"] == [{"value": "u1", "type": "User", "display": "Jane"}]
        assert "externalId" not in data
        assert SCIMGroup(id="g2", display_name="Empty").to_dict()["members"] == []

    def test_list_response_to_dict(self) -> None:
        """Test the ListResponse envelope."""
        data = SCIMListResponse(resources=[{"id": "u1"}], total_results=3).to_dict()

        assert data["totalResults"] == 3
        assert data["startIndex"] == 1
        assert data["Resources"] == [{"id": "u1"}]


class TestFromRequest:
    """Tests for parsing pushed resources."""

    def test_user_id_is_ignored(self) -> None:
        """Test that a client-chosen id is dropped."""
        user = SCIMUser.from_request({"id": "client-id", "userName": "jdoe"})

        assert user.id == ""
        assert user.user_name == "jdoe"

    def test_group_requires_display_name(self) -> None:
        """Test that a group without displayName is rejected."""
        with pytest.raises(KeyError):
            SCIMGroup.from_request({"members": []})


class TestParsePatchRequest:
    """Tests for parse_patch_request."""

    def test_operations(self) -> None:
        """Test that operation names are case-insensitive."""
        operations = parse_patch_request(
            {
                "schemas": [SCIM_PATCH_SCHEMA],
                "Operations": [
                    {"op": "Replace", "path": "active", "value": False},
                    {"op": "remove", "path": 'members[value eq "u1"]'},
                ],
            }
        )

        assert [op.op for op in operations] == [SCIMPatchOp.REPLACE, SCIMPatchOp.REMOVE]
        assert operations[0].value is False
        assert operations[1].value is None

    @pytest.mark.parametrize(
        "body",
        [
            {"Operations": [{"op": "add", "path": "active", "value": True}]},
            {"schemas": [SCIM_PATCH_SCHEMA], "Operations": []},
            {"schemas": [SCIM_PATCH_SCHEMA], "Operations": ["add"]},
            {"schemas": [SCIM_PATCH_SCHEMA], "Operations": [{"op": "move", "path": "x"}]},
        ],
    )
    def test_invalid_messages(self, body: dict[str, object]) -> None:
        """Test that malformed PatchOp messages are rejected."""
        with pytest.raises(ValueError):
            parse_patch_request(body)
