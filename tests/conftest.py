"""
Central pytest configuration and fixtures.

This module provides the fixtures shared across all test modules: an
isolated configuration, logging for the test run, the loopback transport,
and small builders for compositions.
"""

import tempfile
import uuid
from collections.abc import Generator
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from virtuoso.composition.composer import Composer
from virtuoso.composition.manager import CompositionManager
from virtuoso.composition.models import Composition
from virtuoso.composition.performer import Performer
from virtuoso.config_loader import load_config
from virtuoso.config_models import SystemConfig
from virtuoso.drivers.loopback import LoopbackProvider
from virtuoso.logging_config import get_logger, setup_logging

ALICE = "alice@localhost"
BOB = "bob@localhost"

_test_run_id: Optional[str] = None


# ================================================================================
# Session-scoped fixtures (created once per test session)
# ================================================================================

@pytest.fixture(scope="session")
def config() -> SystemConfig:
    """
    Load system configuration with temporary directories for test isolation.
    """
    temp_dir = Path(tempfile.mkdtemp(prefix="virtuoso_test_"))

    session_config = load_config(Path("nonexistent_config.yml"))
    session_config.paths.log_dir = temp_dir / "logs"
    session_config.paths.data_dir = temp_dir / "data"
    session_config.paths.log_dir.mkdir(parents=True, exist_ok=True)
    session_config.paths.data_dir.mkdir(parents=True, exist_ok=True)

    return session_config


@pytest.fixture(scope="session", autouse=True)
def test_session(config: SystemConfig) -> Generator[str, None, None]:
    """Set up logging once for the whole run under a fresh run id."""
    global _test_run_id

    _test_run_id = str(uuid.uuid4())
    setup_logging(config, _test_run_id)
    logger = get_logger("tests")
    logger.info(f"Starting test session {_test_run_id}")

    yield _test_run_id

    logger.info(f"Completing test session {_test_run_id}")


# ================================================================================
# Function-scoped fixtures (created for each test function)
# ================================================================================

@pytest.fixture
def loopback() -> Generator[LoopbackProvider, None, None]:
    """Provide a loopback transport; pending deliveries are cancelled afterwards."""
    provider = LoopbackProvider()

    yield provider

    provider.close()


@pytest.fixture
def performer(loopback: LoopbackProvider) -> Performer:
    return Performer(loopback)


@pytest.fixture
def composer() -> Composer:
    return Composer(default_cue_timeout_ms=1000)


@pytest.fixture
def manager(tmp_path: Path, loopback: LoopbackProvider) -> CompositionManager:
    return CompositionManager(tmp_path / "data", provider=loopback)


@pytest.fixture
def make_composition():
    """Build a composition from raw step dicts; accounts default to alice and bob."""

    def _make(steps: List[Dict], accounts: Optional[Dict[str, str]] = None, **fields) -> Composition:
        accounts = accounts if accounts is not None else {"alice": ALICE, "bob": BOB}
        data = {
            "id": fields.pop("id", f"comp_test_{uuid.uuid4().hex[:6]}"),
            "accounts": [{"alias": alias, "jid": jid} for alias, jid in accounts.items()],
            "steps": [
                {"id": step.pop("id", f"step_{index}"), **step}
                for index, step in enumerate((dict(s) for s in steps), start=1)
            ],
            **fields,
        }
        return Composition.model_validate(data)

    return _make


# ================================================================================
# Pytest hooks
# ================================================================================

def pytest_collection_modifyitems(config: pytest.Config, items) -> None:
    """Add markers based on test path."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)


def get_current_test_run_id() -> Optional[str]:
    """Get the current test run ID."""
    return _test_run_id
