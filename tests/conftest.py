"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before any import that builds the global
settings object.
"""

import os

os.environ["APP_ENV"] = "testing"
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_FORMAT", "json")
os.environ.setdefault("ADMISSION_REGISTER_PRESETS", "true")

import pytest


class FakeClock:
    """Deterministic millisecond clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
