"""Shared fixtures for the test suite."""

import pytest

from fieldsales_tracker.config import PermissionsConfig
from fieldsales_tracker.permissions import StaticPermissions
from helpers import MemorySink


@pytest.fixture
def granted_permissions() -> StaticPermissions:
    return StaticPermissions(PermissionsConfig())


@pytest.fixture
def memory_sink() -> MemorySink:
    return MemorySink()
