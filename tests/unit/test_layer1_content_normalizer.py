"""
Unit tests for Layer 1: Content Normalizer

Tests:
- HTML to text conversion (scripts dropped, entities decoded, whitespace collapsed)
- URL harvesting, redirect-wrapper decoding and opportunity filtering
- Email source detection
- Never-raising behavior on malformed input
- LangGraph node output
"""

import pytest

from src.layer1.content_normalizer import (
    clean_whitespace,
    content_normalizer_node,
    decode_redirect_url,
    detect_email_source,
    extract_urls,
    filter_urls,
    html_to_text,
    normalize_email,
)


# ===== TESTS: HTML -> TEXT =====

class TestHtmlToText:
    """Tests for markup stripping."""

    def test_strips_tags_and_decodes_entities(self):
        """Should strip tags and decode HTML entities."""
        text = html_to_text("<p>Salt &amp; Pepper&nbsp;<b>ApS</b></p>")
        assert text == "Salt & Pepper ApS"

    def test_drops_script_and_style_blocks(self):
        """Script/style content must not leak into text."""
        html = "<html><head><style>.x{}</style></head><body><script>var a=1;</script><p>Hello</p></body></html>"
        assert html_to_text(html) == "Hello"

    def test_block_elements_become_line_breaks(self):
        """Paragraphs and list items are separated by newlines."""
        text = html_to_text("<p>First</p><p>Second</p><ul><li>One</li><li>Two</li></ul>")
        lines = [line for line in text.split("\n") if line]
        assert lines == ["First", "Second", "One", "Two"]

    def test_br_becomes_newline(self):
        assert html_to_text("Line one<br>Line two") == "Line one\nLine two"

    def test_empty_input(self):
        assert html_to_text("") == ""

    def test_clean_whitespace_caps_blank_lines(self):
        """Runs of blank lines collapse to a single blank line."""
        assert clean_whitespace("a   b\n\n\n\n\nc") == "a b\n\nc"


# ===== TESTS: URL HANDLING =====

class TestUrlHandling:
    """Tests for URL extraction, redirect decoding and filtering."""

    def test_extracts_href_and_bare_urls(self):
        html = '<a href="https://acme.dk/careers/1">Job</a>'
        text = "See also https://acme.dk/jobs/2."
        urls = extract_urls(html, text)
        assert urls == ["https://acme.dk/careers/1", "https://acme.dk/jobs/2"]

    def test_ignores_mailto_links(self):
        assert extract_urls('<a href="mailto:hr@acme.dk">Mail</a>') == []

    def test_decodes_outlook_safe_links(self):
        """Safe-link wrappers resolve to the destination URL."""
        wrapped = (
            "https://eur01.safelinks.protection.outlook.com/?url="
            "https%3A%2F%2Facme.dk%2Fcareers%2Fbackend&data=abc&reserved=0"
        )
        assert decode_redirect_url(wrapped) == "https://acme.dk/careers/backend"

    def test_plain_url_unchanged(self):
        assert decode_redirect_url("https://acme.dk/jobs/1?ref=mail") == "https://acme.dk/jobs/1?ref=mail"

    def test_filter_keeps_opportunity_paths_only(self):
        urls = [
            "https://acme.dk/careers/backend",
            "https://acme.dk/about",
            "https://www.jobindex.dk/vis-job/h123",
            "https://acme.dk/jobs/unsubscribe?id=1",
            "https://cdn.acme.dk/jobs/banner.png",
            "https://www.facebook.com/acme/jobs",
        ]
        assert filter_urls(urls) == [
            "https://acme.dk/careers/backend",
            "https://www.jobindex.dk/vis-job/h123",
        ]

    def test_filter_deduplicates_after_decoding(self):
        """A wrapped and an unwrapped link to the same posting collapse."""
        urls = [
            "https://acme.dk/careers/backend",
            "https://tracker.example.com/r?url=https%3A%2F%2Facme.dk%2Fcareers%2Fbackend%2F",
        ]
        assert filter_urls(urls) == ["https://acme.dk/careers/backend"]

    def test_filter_respects_max_urls(self):
        urls = [f"https://acme.dk/jobs/{i}" for i in range(10)]
        assert len(filter_urls(urls, max_urls=3)) == 3


# ===== TESTS: SOURCE DETECTION =====

class TestDetectEmailSource:

    @pytest.mark.parametrize("sender,expected", [
        ("Jobindex <noreply@jobindex.dk>", "jobindex"),
        ("LinkedIn Job Alerts <jobalerts-noreply@linkedin.com>", "linkedin"),
        ("hr@acme.dk", "generic"),
    ])
    def test_detects_from_sender(self, sender, expected):
        assert detect_email_source(sender) == expected

    def test_falls_back_to_body(self):
        assert detect_email_source("alerts@example.com", "Powered by it-jobbank") == "it-jobbank"


# ===== TESTS: NORMALIZE EMAIL =====

class TestNormalizeEmail:

    def test_normalizes_job_alert(self, acme_email):
        normalized = normalize_email(acme_email)

        assert normalized["email_id"] == "msg-acme-1"
        assert "Backend Developer - Acme A/S, Copenhagen" in normalized["plain_text"]
        assert "color: red" not in normalized["plain_text"]
        assert normalized["urls"] == [
            "https://www.jobindex.dk/vis-job/h123",
            "https://www.jobindex.dk/vis-job/h456",
        ]
        assert normalized["source_hint"] == "jobindex"

    def test_uses_text_body_without_html(self):
        normalized = normalize_email({
            "subject": "Job",
            "sender": "hr@acme.dk",
            "text_body": "Apply here:   https://acme.dk/careers/42",
        })
        assert normalized["plain_text"] == "Apply here: https://acme.dk/careers/42"
        assert normalized["urls"] == ["https://acme.dk/careers/42"]

    def test_malformed_body_yields_empty_output(self):
        """Non-string bodies are treated as empty, never raised."""
        normalized = normalize_email({"subject": "Broken", "html_body": 12345})
        assert normalized["plain_text"] == ""
        assert normalized["urls"] == []

    def test_snippet_fallback(self):
        normalized = normalize_email({"subject": "S", "snippet": "Short preview text"})
        assert normalized["plain_text"] == "Short preview text"

    def test_email_id_is_stable_without_provider_id(self):
        email = {"subject": "Hello", "sender": "a@b.dk", "date": "2025-01-01"}
        assert normalize_email(email)["email_id"] == normalize_email(dict(email))["email_id"]
        assert normalize_email(email)["email_id"].startswith("email-")


class TestContentNormalizerNode:

    def test_node_returns_normalized_delta(self, acme_email):
        updates = content_normalizer_node({"email": acme_email, "run_id": "run-1"})

        assert updates["phase"] == "normalizing"
        assert updates["normalized"]["email_id"] == "msg-acme-1"
        assert "errors" not in updates
