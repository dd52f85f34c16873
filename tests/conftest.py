"""Shared pytest fixtures for the feature import test suite."""

from __future__ import annotations

import pytest

from feature_import.core.config import ImportConfig
from feature_import.orchestrators.progress import JobProgressTracker
from feature_import.providers.reframe import ReframeService
from feature_import.store.memory import InMemoryFeatureStore
from tests.helpers import TEST_BASE_URL, make_reframe_service, reframe_handler


@pytest.fixture()
def store() -> InMemoryFeatureStore:
    return InMemoryFeatureStore()


@pytest.fixture()
def tracker() -> JobProgressTracker:
    return JobProgressTracker()


@pytest.fixture()
def config() -> ImportConfig:
    """Configuration with retries that never sleep."""
    return ImportConfig(
        geodesy_base_url=TEST_BASE_URL,
        geodesy_timeout_s=1.0,
        geodesy_max_retries=1,
        geodesy_retry_base_s=0.0,
        geodesy_max_workers=2,
    )


@pytest.fixture()
def reframe_service() -> ReframeService:
    """Service answering 611.9 m (Bessel) then 566.1 m (WGS 84)."""
    return make_reframe_service(reframe_handler())
