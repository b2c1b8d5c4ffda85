"""
Shared pytest fixtures for x_reader tests.
"""

import logging

import pytest

from x_reader.config import ReaderConfig
from x_reader.tests.fake_playwright import FakePage, FakePlaywright


@pytest.fixture
def config(tmp_path):
    """Fast configuration pointing at a throwaway profile."""
    return ReaderConfig(
        profile_dir=str(tmp_path / "profile"),
        auth_file=str(tmp_path / "auth.json"),
        navigation_timeout=1000,
        settle_delay=0,
        element_timeout=100,
        headless=True,
    )


@pytest.fixture
def fake_page():
    return FakePage()


@pytest.fixture
def fake_playwright(monkeypatch, fake_page):
    """Replace async_playwright in the session module with a fake driver."""
    driver = FakePlaywright(fake_page)
    monkeypatch.setattr("x_reader.session.async_playwright", driver)
    return driver


@pytest.fixture(autouse=True)
def propagate_logs():
    """Let caplog see x_reader records even after setup_logger() turned propagation off."""
    logger = logging.getLogger("x_reader")
    previous = logger.propagate
    logger.propagate = True
    yield
    logger.propagate = previous
