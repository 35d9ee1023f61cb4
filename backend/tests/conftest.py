"""Shared fixtures. Async code is driven with asyncio.run inside plain tests."""

import pytest

from uisnap.config import get_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
