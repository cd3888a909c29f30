"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.
"""

import os
import sys

import pytest

# Add project root to sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from inference_gateway.analysis.models.analysis import (  # noqa: E402
    AnalysisRequest,
    CallerIdentity,
    ProviderCredential,
)
from inference_gateway.core.config.constants import Tier  # noqa: E402
from inference_gateway.infrastructure.state.memory_store import MemoryStateStore  # noqa: E402
from tests.test_fixtures.settings_factory import make_settings  # noqa: E402

# 2026-03-10T12:00:00Z, mid-day so daily windows never roll over by accident
START_TIME = 1773144000.0


# ============================================================================
# Clock
# ============================================================================


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def settings():
    return make_settings()


# ============================================================================
# State Fixtures
# ============================================================================


@pytest.fixture
def memory_store(clock):
    return MemoryStateStore(clock=clock)


@pytest.fixture(scope="session")
def use_real_redis():
    """Check if real Redis should be used for integration tests."""
    return os.getenv("USE_REAL_REDIS", "0").lower() in ("1", "true", "yes")


# ============================================================================
# Domain Fixtures
# ============================================================================


@pytest.fixture
def caller():
    return CallerIdentity(caller_id="user-1", tier=Tier.FREE)


@pytest.fixture
def premium_caller():
    return CallerIdentity(caller_id="user-premium", tier=Tier.PREMIUM)


@pytest.fixture
def analysis_request(caller):
    return AnalysisRequest(
        image=b"\xff\xd8\xff\xe0fake-jpeg-bytes",
        mime_type="image/jpeg",
        prompt="Identify the corals in this tank.",
        caller=caller,
        source_address="203.0.113.7",
    )


@pytest.fixture
def gemini_credential():
    return ProviderCredential(provider="gemini", key_id="gemini_1", index=1, secret="AIza-test-key-1")


@pytest.fixture
def openai_credential():
    return ProviderCredential(provider="openai", key_id="openai_1", index=1, secret="sk-test-openai")
