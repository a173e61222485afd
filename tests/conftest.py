"""
Pytest configuration and shared fixtures for all cmdhost tests.

Every test gets its own module cache and module root so resolution state
never leaks between tests; the manifest parser is shared (it is stateless).
"""

import sys
import pytest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent.parent))
from cmdhost.frontend import DataEvaluator, shared_parser
from cmdhost.host import ModuleManager
from cmdhost.modules.cache import ModuleCache
from cmdhost.runtime import HostEnvironment, SessionState


# =============================================================================
# Session-scoped fixtures (shared across all tests)
# =============================================================================

@pytest.fixture(scope="session")
def session_parser():
    """Session-scoped manifest parser (Lark grammar is built once)."""
    return shared_parser()


@pytest.fixture(scope="session")
def evaluator(session_parser):
    """Stateless data-language evaluator shared across all tests."""
    return DataEvaluator(parser=session_parser)


# =============================================================================
# Function-scoped fixtures (default - one per test)
# =============================================================================

@pytest.fixture
def host():
    """Deterministic host: fixed culture and edition, workflows disabled."""
    return HostEnvironment.current(culture="en-US")


@pytest.fixture
def module_root(tmp_path):
    """Empty module search-path root."""
    root = tmp_path / "modules"
    root.mkdir()
    return root


@pytest.fixture
def cache():
    return ModuleCache()


@pytest.fixture
def session():
    return SessionState("test")


@pytest.fixture
def manager(module_root, host, cache, session):
    """Module manager over module_root with an isolated cache and session."""
    return ModuleManager(search_paths=[str(module_root)], host=host, cache=cache, session=session)


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers for test organization."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
