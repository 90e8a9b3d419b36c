"""Pytest configuration."""

import os

# Ensure test environment
os.environ.setdefault("SL_DATABASE_URL", "sqlite+aiosqlite:///test.db")
os.environ.setdefault("SL_DEBUG", "true")
os.environ.setdefault("SL_GEO_LOOKUP_ENABLED", "true")
os.environ.setdefault("SL_EXPERIMENT_ENABLED", "true")
os.environ.setdefault("SL_GLOBAL_GA4_ID", "G-GLOBAL")
os.environ.setdefault("SL_GLOBAL_GTM_ID", "GTM-GLOBAL")
os.environ.setdefault("SL_GLOBAL_META_PIXEL_ID", "")
os.environ.setdefault("SL_GLOBAL_TIKTOK_PIXEL_ID", "")

import pytest

from app.middleware.rate_limit import reset_rate_limits


@pytest.fixture(autouse=True)
def _clean_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()
