"""
Unit tests for src/layer3/web_tools.py

FirecrawlApp is replaced by a MagicMock; the client must normalize its
response shapes and turn every failure into an ok=False outcome.
"""

from unittest.mock import MagicMock

import pytest

from src.layer3.web_tools import (
    MAX_CONTENT_LENGTH,
    FirecrawlWebClient,
    build_exclusion_query,
    classify_source_type,
)


def _result(url, title="", description=""):
    item = MagicMock()
    item.url = url
    item.title = title
    item.description = description
    item.markdown = None
    return item


@pytest.fixture
def firecrawl_app():
    return MagicMock()


# ===== HELPERS =====

class TestClassifySourceType:

    @pytest.mark.parametrize("url,expected", [
        ("https://www.jobindex.dk/vis-job/h123", "job_board"),
        ("https://dk.linkedin.com/jobs/view/1", "job_board"),
        ("https://acme.dk/careers/backend-developer", "career_page"),
        ("https://acme.dk/job/123", "career_page"),
        ("https://acme.dk/om-os", "company_page"),
        ("https://blog.example.com/post", "other"),
    ])
    def test_source_types(self, url, expected):
        assert classify_source_type(url) == expected

    def test_exclusion_query(self):
        query = build_exclusion_query("Acme careers", ["linkedin.com", "facebook.com"])
        assert query == "Acme careers -site:linkedin.com -site:facebook.com"


# ===== SEARCH =====

class TestFirecrawlSearch:

    def test_search_normalizes_web_results(self, firecrawl_app):
        response = MagicMock()
        response.web = [
            _result("https://acme.dk/careers/1", "Backend Developer", "Join Acme"),
            _result("https://www.linkedin.com/jobs/view/9", "Backend Developer"),
            _result("https://www.jobindex.dk/vis-job/h1", "Backend Developer - Acme"),
        ]
        firecrawl_app.search.return_value = response

        client = FirecrawlWebClient(app=firecrawl_app)
        outcome = client.search("Acme Backend Developer", exclude_domains=["linkedin.com"], limit=5)

        assert outcome.ok is True
        assert [h.url for h in outcome.hits] == ["https://acme.dk/careers/1", "https://www.jobindex.dk/vis-job/h1"]
        assert outcome.hits[0].score == 1.0
        assert outcome.hits[0].snippet == "Join Acme"
        firecrawl_app.search.assert_called_once_with("Acme Backend Developer -site:linkedin.com", limit=5)

    def test_search_accepts_dict_response(self, firecrawl_app):
        firecrawl_app.search.return_value = {"data": [{"url": "https://acme.dk/jobs/2", "title": "Dev"}]}
        outcome = FirecrawlWebClient(app=firecrawl_app).search("Acme")
        assert [h.url for h in outcome.hits] == ["https://acme.dk/jobs/2"]

    def test_search_failure_is_an_outcome(self, firecrawl_app):
        firecrawl_app.search.side_effect = ConnectionError("network down")
        outcome = FirecrawlWebClient(app=firecrawl_app).search("Acme")

        assert outcome.ok is False
        assert "network down" in outcome.error
        assert firecrawl_app.search.call_count == 2  # retried once


# ===== EXTRACT =====

class TestFirecrawlExtract:

    def test_extract_returns_markdown(self, firecrawl_app):
        page = MagicMock()
        page.markdown = "# Backend Developer\nAcme A/S"
        page.metadata = {"title": "Backend Developer - Acme"}
        page.title = None
        firecrawl_app.scrape.return_value = page

        outcome = FirecrawlWebClient(app=firecrawl_app).extract("https://acme.dk/careers/1")

        assert outcome.ok is True
        assert outcome.content.startswith("# Backend Developer")
        assert outcome.title == "Backend Developer - Acme"
        assert outcome.truncated is False
        firecrawl_app.scrape.assert_called_once_with(
            "https://acme.dk/careers/1", formats=["markdown"], only_main_content=True
        )

    def test_long_content_is_truncated(self, firecrawl_app):
        page = MagicMock()
        page.markdown = "a" * (MAX_CONTENT_LENGTH + 500)
        firecrawl_app.scrape.return_value = page

        outcome = FirecrawlWebClient(app=firecrawl_app).extract("https://acme.dk/careers/1")

        assert outcome.truncated is True
        assert outcome.original_length == MAX_CONTENT_LENGTH + 500
        assert outcome.content.endswith(f"[CONTENT TRUNCATED - original {MAX_CONTENT_LENGTH + 500} chars]")

    def test_empty_content_is_a_failure(self, firecrawl_app):
        page = MagicMock()
        page.markdown = "   "
        firecrawl_app.scrape.return_value = page

        outcome = FirecrawlWebClient(app=firecrawl_app).extract("https://acme.dk/careers/1")
        assert outcome.ok is False
        assert outcome.error == "extract returned no content"

    def test_scrape_exception_is_a_failure(self, firecrawl_app):
        firecrawl_app.scrape.side_effect = RuntimeError("403 Forbidden")
        outcome = FirecrawlWebClient(app=firecrawl_app).extract("https://acme.dk/careers/1")

        assert outcome.ok is False
        assert "403" in outcome.error
