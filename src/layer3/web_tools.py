"""
Web search / extract tools for the research agent.

FirecrawlWebClient wraps FirecrawlApp.search() and FirecrawlApp.scrape().
Both methods always return an outcome object: network and HTTP errors are
reported as ok=False with an error string, never raised to the agent.

Any object with the same search()/extract() signatures can stand in for the
FireCrawl client (tests use an in-memory fake).
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Protocol

from firecrawl import FirecrawlApp
from tenacity import retry, stop_after_attempt, wait_exponential

from src.common.config import Config
from src.common.utils import domain_matches, truncate_with_marker

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 15000

JOB_BOARD_DOMAINS = [
    "jobindex.dk",
    "linkedin.com",
    "indeed.com",
    "glassdoor.com",
    "monster.dk",
    "stepstone.dk",
    "jobnet.dk",
    "ofir.dk",
    "karriere.dk",
    "it-jobbank.dk",
    "thehub.io",
]

CAREER_PATH_RE = re.compile(
    r"/(careers?|jobs?|vacanc(y|ies)|positions?|arbejde|stillinger?|karriere|ledige-stillinger)(/|\?|$|-)",
    re.IGNORECASE,
)
COMPANY_PATH_RE = re.compile(r"/(about|company|om-os|om)(/|$)", re.IGNORECASE)


# ===== OUTCOME TYPES =====

@dataclass
class SearchHit:
    url: str
    title: str = ""
    snippet: str = ""
    score: float = 0.0


@dataclass
class SearchOutcome:
    query: str
    ok: bool
    hits: List[SearchHit] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class ExtractOutcome:
    url: str
    ok: bool
    content: str = ""
    title: str = ""
    error: Optional[str] = None
    original_length: int = 0
    truncated: bool = False


class WebResearchClient(Protocol):
    """Search + extract backend used by the research agent."""

    def search(self, query: str, exclude_domains: Iterable[str] = (), limit: int = 5) -> SearchOutcome:
        ...

    def extract(self, url: str) -> ExtractOutcome:
        ...


# ===== HELPERS =====

def classify_source_type(url: str) -> str:
    """
    Heuristic source type of a URL.

    Returns:
        "job_board", "career_page", "company_page" or "other"
    """
    if domain_matches(url, JOB_BOARD_DOMAINS):
        return "job_board"
    if CAREER_PATH_RE.search(url):
        return "career_page"
    if COMPANY_PATH_RE.search(url):
        return "company_page"
    return "other"


def build_exclusion_query(query: str, exclude_domains: Iterable[str]) -> str:
    """Append -site: operators for every excluded domain."""
    exclusions = " ".join(f"-site:{d}" for d in exclude_domains if d)
    return f"{query} {exclusions}".strip()


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read name from an SDK object or a dict."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _extract_search_results(search_response: Any) -> List[Any]:
    """
    Normalize FireCrawl search responses across SDK versions into a list.

    Supports response.web (v4.8+), response.data (older), dict and bare list shapes.
    """
    if not search_response:
        return []

    results = getattr(search_response, "web", None)
    if results is None and hasattr(search_response, "data"):
        results = getattr(search_response, "data", None)

    if results is None and isinstance(search_response, dict):
        results = (
            search_response.get("web")
            or search_response.get("data")
            or search_response.get("results")
        )

    if results is None and isinstance(search_response, list):
        results = search_response

    return list(results or [])


def _result_title(result: Any) -> str:
    title = _field(result, "title")
    if not title:
        metadata = _field(result, "metadata")
        if metadata is not None:
            title = _field(metadata, "title")
    return str(title or "")


# ===== FIRECRAWL CLIENT =====

class FirecrawlWebClient:
    """FireCrawl-backed implementation of WebResearchClient."""

    def __init__(self, api_key: Optional[str] = None, app: Optional[Any] = None):
        self.app = app if app is not None else FirecrawlApp(api_key=api_key or Config.FIRECRAWL_API_KEY)
        self.logger = logging.getLogger(__name__)

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True
    )
    def _search_raw(self, query: str, limit: int) -> Any:
        return self.app.search(query, limit=limit)

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=2, max=5),
        reraise=True
    )
    def _scrape_raw(self, url: str) -> Any:
        return self.app.scrape(
            url,
            formats=['markdown'],
            only_main_content=True  # Skip nav, footer, cookie banners
        )

    def search(self, query: str, exclude_domains: Iterable[str] = (), limit: int = 5) -> SearchOutcome:
        """
        Search the web, dropping results on excluded domains.

        Scores are rank based (1.0 for the first hit, -0.1 per position) since
        FireCrawl does not return relevance scores.
        """
        exclude_domains = list(exclude_domains)
        full_query = build_exclusion_query(query, exclude_domains)
        try:
            response = self._search_raw(full_query, limit)
        except Exception as e:
            self.logger.warning(f"[FireCrawl] search failed for '{query}': {e}")
            return SearchOutcome(query=query, ok=False, error=f"search failed: {e}")

        hits: List[SearchHit] = []
        for rank, result in enumerate(_extract_search_results(response)):
            url = _field(result, "url")
            if not url or domain_matches(url, exclude_domains):
                continue
            snippet = _field(result, "description") or _field(result, "markdown") or ""
            hits.append(SearchHit(
                url=url,
                title=_result_title(result),
                snippet=str(snippet)[:500],
                score=round(max(0.0, 1.0 - rank * 0.1), 2),
            ))

        self.logger.info(f"[FireCrawl] '{full_query}' -> {len(hits)} results")
        return SearchOutcome(query=query, ok=True, hits=hits)

    def extract(self, url: str) -> ExtractOutcome:
        """Scrape one page to markdown, capped at MAX_CONTENT_LENGTH characters."""
        try:
            result = self._scrape_raw(url)
        except Exception as e:
            self.logger.warning(f"[FireCrawl] scrape failed for {url}: {e}")
            return ExtractOutcome(url=url, ok=False, error=f"extract failed: {e}")

        content = _field(result, "markdown") or ""
        if not content.strip():
            return ExtractOutcome(url=url, ok=False, error="extract returned no content")

        original_length = len(content)
        content = truncate_with_marker(
            content,
            MAX_CONTENT_LENGTH,
            f"\n\n[CONTENT TRUNCATED - original {original_length} chars]",
        )
        return ExtractOutcome(
            url=url,
            ok=True,
            content=content,
            title=_result_title(result),
            original_length=original_length,
            truncated=original_length > MAX_CONTENT_LENGTH,
        )
