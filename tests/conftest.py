"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import pytest

from idbridge.core.config import get_settings

# Re-export all fixtures from fixtures modules
from tests.fixtures.directory import *  # noqa: F401, F403
from tests.fixtures.keys import *  # noqa: F401, F403
from tests.fixtures.oidc import *  # noqa: F401, F403
from tests.fixtures.saml import *  # noqa: F401, F403
from tests.fixtures.stores import *  # noqa: F401, F403


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    """Drop cached settings so environment changes apply per test."""
    get_settings.cache_clear()
