"""Shared pytest setup: one QCoreApplication for the whole run."""

import pytest

from rpc_fakes import qt_app


@pytest.fixture(scope="session", autouse=True)
def qapp():
    return qt_app()
