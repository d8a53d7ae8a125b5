"""
Global fixtures for all unit tests.

This conftest provides autouse fixtures that prevent real external service calls:
- Environment variable isolation (prevents credential leakage)
- Structured JSON events switched off (keeps test output readable)

These fixtures apply automatically to ALL tests in tests/unit/.
"""

import copy
import os

import pytest

# Set test environment BEFORE any imports to prevent Config from loading real values
os.environ["STRUCTURED_EVENTS"] = "false"
os.environ["ENABLE_LLM_RESEARCH_PLANNER"] = "false"
os.environ["ENABLE_CHUNKED_CLASSIFICATION"] = "false"

from tests.fixtures.sample_emails import (  # noqa: E402
    ACME_CAREERS_URL,
    ACME_EMAIL,
    ACME_POSTING,
    SOFTWARE_CONFIG,
)
from tests.helpers.fakes import FakeWebClient  # noqa: E402


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """
    Isolate test environment from real credentials and configurations.

    This prevents real API keys being used if tests accidentally call the
    LLM or FireCrawl.
    """
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-mock-key")
    monkeypatch.setenv("FIRECRAWL_API_KEY", "fc-test-mock-key")
    monkeypatch.setenv("STRUCTURED_EVENTS", "false")


@pytest.fixture
def acme_email():
    return copy.deepcopy(ACME_EMAIL)


@pytest.fixture
def pipeline_config():
    return copy.deepcopy(SOFTWARE_CONFIG)


@pytest.fixture
def backend_candidate():
    return {
        "id": "msg-acme-1-cand-0",
        "company": "Acme A/S",
        "title": "Backend Developer",
        "location": "Copenhagen",
        "technologies": ["Python"],
        "source_url": None,
        "matched": True,
        "confidence": 0.8,
        "reasoning": "Software development role",
        "extracted_fields": {},
    }


@pytest.fixture
def acme_web_client():
    return FakeWebClient(pages={ACME_CAREERS_URL: ("Backend Developer - Acme A/S", ACME_POSTING)})
