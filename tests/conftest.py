"""
Pytest configuration and fixtures for Gatekeeper tests.

This module provides shared fixtures used across unit, integration,
and security tests.
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest

from gatekeeper.store import GatekeeperDB


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db(temp_dir: Path) -> Generator[GatekeeperDB, None, None]:
    """Create a database instance in a temporary directory."""
    database = GatekeeperDB(temp_dir / "gatekeeper.db")
    yield database
    database.close()


@pytest.fixture
def sample_rbac_yaml() -> str:
    """Return a small RBAC configuration for testing."""
    return """
roles_cache_seconds: 30
policies:
  - resource: cashbox
    action: cash_out
    roles: [admin, accountant]
    description: Withdraw cash from the box
  - resource: expenses
    action: create
    roles: [user]
    scope:
      categories: [food, travel]
  - resource: users
    action: manage
    roles: [superadmin]
two_man_actions:
  - cashbox.cash_out
  - payouts.process
"""


@pytest.fixture
def rbac_file(temp_dir: Path, sample_rbac_yaml: str) -> Path:
    """Write the sample RBAC configuration to disk."""
    path = temp_dir / "rbac.yaml"
    path.write_text(sample_rbac_yaml)
    return path
