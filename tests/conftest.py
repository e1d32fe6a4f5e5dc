"""
Pytest configuration and fixtures for appsync-local tests.
"""

import sys
import textwrap
from pathlib import Path
from types import SimpleNamespace

import pytest

# Add the repository root to path for imports
# This allows `from appsync_local import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from appsync_local.config import EngineSettings, NoneDataSource  # noqa: E402
from appsync_local.datasources import DataSourceDispatcher  # noqa: E402
from appsync_local.loader import clear_module_cache  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_module_cache():
    clear_module_cache()
    yield
    clear_module_cache()


@pytest.fixture
def write_resolver(tmp_path):
    """Write a resolver module to disk and return its path."""

    def _write(name: str, source: str) -> str:
        path = tmp_path / f"{name}.py"
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def settings():
    """Engine settings with the managed-service defaults."""
    return EngineSettings()


@pytest.fixture
def none_dispatcher(settings):
    """Dispatcher with a single NONE data source named LocalNone."""
    return DataSourceDispatcher([NoneDataSource(name="LocalNone")], settings=settings)


@pytest.fixture
def make_info():
    """Build a graphql-core-shaped resolve info object."""

    def _make(parent_type: str = "Query", field_name: str = "echo", context=None, variables=None):
        return SimpleNamespace(
            field_name=field_name,
            parent_type=SimpleNamespace(name=parent_type),
            variable_values=variables or {},
            context=context,
        )

    return _make
