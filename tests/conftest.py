"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are pinned here, before anything imports
``callthrottle.core.config``, so local .env files can't change test results.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["CALLTHROTTLE_ENV"] = "testing"

os.environ.setdefault("THROTTLE_DEFAULT_WINDOW_MS", "100")
os.environ.setdefault("THROTTLE_LOG_EVENTS", "true")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOG_FORMAT", "json")

import pytest  # noqa: E402

from callthrottle.adapters.scheduler.manual import ManualScheduler  # noqa: E402


@pytest.fixture
def scheduler() -> ManualScheduler:
    """Simulated clock starting at t=0 that re-raises reported failures."""
    return ManualScheduler()
