import os
from pathlib import Path

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Pin the environment before any flightwatch module is imported.

    Emails go to the in-memory fake adapter and retries do not sleep.
    """
    os.environ["PROTEAN_ENV"] = session.config.option.env
    os.environ.setdefault("NOTIFICATION_MODE", "fake")
    os.environ.setdefault("NOTIFICATION_RETRY_DELAY", "0")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))

        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/application/" in test_path:
            item.add_marker(pytest.mark.application)
        elif "/bdd/" in test_path:
            item.add_marker(pytest.mark.bdd)
