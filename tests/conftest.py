from unittest.mock import AsyncMock

import pytest

from helpers.factories import TENANT_A, TENANT_B, Clock, build_stack, load_fixture, tenant


@pytest.fixture
def ctx():
    return tenant(TENANT_A)


@pytest.fixture
def other_ctx():
    return tenant(TENANT_B)


@pytest.fixture
def mock_db():
    """AsyncMock standing in for AsyncSession; the memory repos never touch it."""
    return AsyncMock()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def stack(clock):
    return build_stack(clock=clock)


@pytest.fixture
def age_pregnancy():
    return load_fixture("age_pregnancy.yaml")


@pytest.fixture
def lipid_program():
    return load_fixture("lipid_program.yaml")


@pytest.fixture
def legacy_screener():
    return load_fixture("legacy_screener.yaml")
