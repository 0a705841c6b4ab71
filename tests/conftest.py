"""Shared fixtures for the wp_sync test suite."""

import logging

import pytest

from tests.helpers import FakeRunner, make_environment
from wp_sync.models import DEVELOPMENT, PRODUCTION, STAGING, TRANSPORT_REMOTE, SyncSettings
from wp_sync.utils.audit import AUDIT_LOGGER_NAME


@pytest.fixture
def runner():
    """A fake command runner."""
    return FakeRunner()


@pytest.fixture
def environments():
    """Production and staging remote, development local."""
    return {
        PRODUCTION: make_environment(PRODUCTION, TRANSPORT_REMOTE),
        STAGING: make_environment(STAGING, TRANSPORT_REMOTE),
        DEVELOPMENT: make_environment(DEVELOPMENT),
    }


@pytest.fixture
def settings(tmp_path, environments):
    """Settings writing every file below a temporary directory."""
    return SyncSettings(
        environments=environments,
        min_interval_seconds=300,
        marker_file=str(tmp_path / ".wp_sync_last"),
        log_file=str(tmp_path / "wp_sync.log"),
        work_dir=str(tmp_path / "work"),
        timeout=30,
        required_tools=(),
        serialized_aware=True,
    )


@pytest.fixture(autouse=True)
def reset_audit_logger():
    """Leave the audit logger without handlers between tests."""
    yield
    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for existing in list(logger.filters):
        logger.removeFilter(existing)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
