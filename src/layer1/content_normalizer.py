"""
Layer 1: Content Normalizer

Turns a raw email into clean plain text plus a short list of
opportunity-related URLs for the classifier.

- HTML -> text with block structure preserved as line breaks
- URL harvesting from href attributes and bare links in text
- Redirect-wrapper decoding (Outlook safe links, ?url= style trackers)
- Tracking/unsubscribe/image/social link removal, opportunity path whitelist

Deterministic and never raises: malformed input yields empty output.
"""

import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, unquote, urlparse

from bs4 import BeautifulSoup

from src.common.state import EmailInput, NormalizedEmail, WorkflowState
from src.common.logger import get_logger
from src.common.structured_logger import LayerContext, StructuredLogger
from src.common.utils import derive_email_id

logger = logging.getLogger(__name__)


# ===== URL FILTER PATTERNS =====

EXCLUDE_URL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"unsubscribe",
        r"^mailto:",
        r"^tel:",
        r"preferences",
        r"indstillinger",
        r"/settings",
        r"\.(gif|png|jpe?g|ico|svg|webp)(\?|$)",
        r"tracking",
        r"://click\.",
        r"/click\?",
        r"pixel",
        r"beacon",
        r"analytics",
        r"facebook\.com",
        r"twitter\.com",
        r"instagram\.com",
        r"youtube\.com",
    ]
]

OPPORTUNITY_PATH_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"/job",
        r"/career",
        r"/karriere",
        r"/stilling",
        r"/vacanc",
        r"/position",
        r"/arbejde",
        r"/ansog",
        r"/apply",
        r"/hire",
        r"/recruit",
        r"/vis-job",
        r"/jobannonce",
    ]
]

# Query parameters that carry the real destination in redirect wrappers
REDIRECT_PARAMS = ("url", "u", "q", "target", "redirect", "dest")

_BARE_URL_RE = re.compile(r"https?://[^\s<>\"'\])]+", re.IGNORECASE)
_TRAILING_PUNCT = ".,;:!?"

BLOCK_BREAKS = {
    "p": "\n\n",
    "h1": "\n\n", "h2": "\n\n", "h3": "\n\n", "h4": "\n\n", "h5": "\n\n", "h6": "\n\n",
    "div": "\n",
    "tr": "\n",
    "li": "\n",
    "table": "\n",
}

EMAIL_SOURCES = [
    ("jobindex", "jobindex"),
    ("it-jobbank", "it-jobbank"),
    ("linkedin", "linkedin"),
    ("jobnet", "jobnet"),
    ("karriere.dk", "karriere.dk"),
    ("thehub", "thehub"),
    ("indeed", "indeed"),
    ("stepstone", "stepstone"),
]


# ===== HTML -> TEXT =====

def html_to_text(html: str) -> str:
    """
    Convert HTML markup to readable plain text.

    Script/style blocks are dropped, block-level elements become line breaks,
    entities are decoded, runs of spaces collapse and each line is trimmed.

    Example:
        >>> html_to_text("<p>Hello&nbsp;<b>world</b></p><p>Bye</p>")
        'Hello world\\n\\nBye'
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")

    for tag in soup(["script", "style", "head", "noscript"]):
        tag.decompose()

    for br in soup.find_all("br"):
        br.replace_with("\n")

    for name, separator in BLOCK_BREAKS.items():
        for element in soup.find_all(name):
            element.append(separator)

    return clean_whitespace(soup.get_text())


def clean_whitespace(text: str) -> str:
    """Collapse horizontal whitespace, trim lines and cap blank-line runs at one."""
    text = text.replace("\xa0", " ").replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t\f\v]+", " ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


# ===== URL HANDLING =====

def extract_urls(html: str, text: str = "") -> List[str]:
    """
    Collect absolute URLs from href attributes and bare links in text.

    Order of first appearance is kept; duplicates are removed.
    """
    urls: List[str] = []

    if html:
        soup = BeautifulSoup(html, "html.parser")
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            if href.lower().startswith("http"):
                urls.append(href)

    for match in _BARE_URL_RE.findall(text or ""):
        urls.append(match.rstrip(_TRAILING_PUNCT))

    return list(dict.fromkeys(urls))


def decode_redirect_url(url: str, max_depth: int = 3) -> str:
    """
    Unwrap redirect wrappers to the destination URL.

    Handles Outlook safe links (*.safelinks.protection.outlook.com/?url=...)
    and generic trackers carrying an absolute URL in a url/u/q/target param.
    Non-wrapped URLs are returned unchanged.
    """
    current = url
    for _ in range(max_depth):
        try:
            parsed = urlparse(current)
        except ValueError:
            return current
        params = parse_qs(parsed.query)
        destination = None
        for name in REDIRECT_PARAMS:
            for value in params.get(name, []):
                value = unquote(value).strip()
                if value.lower().startswith(("http://", "https://")):
                    destination = value
                    break
            if destination:
                break
        if not destination:
            return current
        current = destination
    return current


def filter_urls(urls: List[str], max_urls: int = 50) -> List[str]:
    """
    Keep only opportunity-related URLs.

    Wrappers are decoded first so that two safe links to the same posting
    collapse to one entry.
    """
    kept: List[str] = []
    seen = set()
    for raw in urls:
        url = decode_redirect_url(raw)
        if any(p.search(url) for p in EXCLUDE_URL_PATTERNS):
            continue
        if not any(p.search(url) for p in OPPORTUNITY_PATH_PATTERNS):
            continue
        key = url.rstrip("/")
        if key in seen:
            continue
        seen.add(key)
        kept.append(url)
        if len(kept) >= max_urls:
            break
    return kept


def detect_email_source(sender: str, text: str = "") -> str:
    """Identify the newsletter source from the sender (falls back to the body)."""
    sender = (sender or "").lower()
    for needle, source in EMAIL_SOURCES:
        if needle in sender:
            return source
    head = (text or "")[:2000].lower()
    for needle, source in EMAIL_SOURCES:
        if needle in head:
            return source
    return "generic"


# ===== NORMALIZER =====

def normalize_email(email: EmailInput, max_urls: int = 50) -> NormalizedEmail:
    """
    Normalize one email into plain text + filtered URLs.

    Never raises: unreadable bodies produce an empty result and a warning.
    """
    email_id = derive_email_id(email)
    html = email.get("html_body") or ""
    plain_alternative = email.get("text_body") or ""

    plain_text = ""
    urls: List[str] = []
    try:
        if not isinstance(html, str) or not isinstance(plain_alternative, str):
            raise TypeError("email body must be a string")
        plain_text = html_to_text(html) if html else clean_whitespace(plain_alternative)
        urls = filter_urls(extract_urls(html, plain_alternative or plain_text), max_urls=max_urls)
    except Exception as e:
        logger.warning(f"Could not normalize email {email_id}: {e}")
        plain_text, urls = "", []

    if not plain_text and email.get("snippet"):
        plain_text = clean_whitespace(str(email["snippet"]))

    return {
        "email_id": email_id,
        "subject": email.get("subject", "") or "",
        "sender": email.get("sender", "") or "",
        "date": email.get("date", "") or "",
        "plain_text": plain_text,
        "urls": urls,
        "source_hint": detect_email_source(email.get("sender", "") or "", plain_text),
    }


# ===== LANGGRAPH NODE FUNCTION =====

def content_normalizer_node(
    state: WorkflowState,
    events: Optional[StructuredLogger] = None,
) -> Dict[str, Any]:
    """
    LangGraph node function for Layer 1: Content Normalizer.

    Returns:
        Dictionary with updates to merge into state
    """
    log = get_logger(__name__, run_id=state.get("run_id"), layer="layer1")
    email = state.get("email") or {}

    if events is None:
        normalized = normalize_email(email)
    else:
        with LayerContext(events, 1) as ctx:
            normalized = normalize_email(email)
            ctx.add_metadata("text_chars", len(normalized["plain_text"]))
            ctx.add_metadata("urls", len(normalized["urls"]))

    log.info(
        f"Normalized '{normalized['subject'][:60]}': {len(normalized['plain_text'])} chars, "
        f"{len(normalized['urls'])} opportunity URLs (source={normalized['source_hint']})"
    )

    return {"normalized": normalized, "phase": "normalizing"}
