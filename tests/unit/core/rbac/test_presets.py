"""Unit tests for preset mapping bundles."""

from __future__ import annotations

import re

import pytest

from idbridge.core.rbac import DEFAULT_ROLES, PRESETS, get_preset


class TestPresets:
    """Tests for the built-in presets."""

    @pytest.mark.parametrize("name", sorted(PRESETS))
    def test_preset_targets_are_builtin_roles(self, name: str) -> None:
        """Test that every preset maps to a built-in role."""
        for template in get_preset(name):
            assert template.target_role in DEFAULT_ROLES

    @pytest.mark.parametrize("name", sorted(PRESETS))
    def test_preset_patterns_compile(self, name: str) -> None:
        """Test that preset patterns are valid expressions."""
        for template in get_preset(name):
            if template.source_pattern:
                re.compile(template.source_pattern)

    def test_known_providers(self) -> None:
        """Test the available preset names."""
        assert set(PRESETS) == {"azure-ad", "okta", "google", "onelogin"}

    def test_unknown_preset(self) -> None:
        """Test that get_preset raises KeyError for unknown names."""
        with pytest.raises(KeyError):
            get_preset("ping")
