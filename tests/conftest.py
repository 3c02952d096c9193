"""Shared fixtures: every test gets its own engine."""

import pytest

from trackfx import Engine, set_default_engine


@pytest.fixture(autouse=True)
def engine():
    """A fresh Engine, installed as the default for the duration of the test."""
    fresh = Engine()
    previous = set_default_engine(fresh)
    try:
        yield fresh
    finally:
        set_default_engine(previous)
