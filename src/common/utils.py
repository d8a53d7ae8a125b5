"""
Common utility functions for the email opportunity pipeline.

Shared helpers used across multiple layers so that confidence handling,
identifiers and truncation behave the same everywhere.
"""

import asyncio
import concurrent.futures
import hashlib
from typing import Any, Coroutine, Dict, Optional, TypeVar
from urllib.parse import urlparse

from src.common.state import Candidate, EmailInput

T = TypeVar('T')


def run_async(coro: Coroutine[None, None, T]) -> T:
    """
    Run an async coroutine from a sync context, handling nested event loops.

    LangGraph nodes are synchronous, but the research fan-out is asyncio based.
    When a caller already runs an event loop (e.g. an async web handler), the
    coroutine is executed in a worker thread with its own loop.

    Example:
        >>> async def fetch_data():
        ...     return "data"
        >>> result = run_async(fetch_data())  # Works from both sync and async contexts
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(asyncio.run, coro)
        return future.result()


def clamp_confidence(value: float) -> float:
    """Clamp a confidence score into [0, 1]."""
    return max(0.0, min(1.0, float(value)))


def normalize_confidence(value: Any, matched: bool) -> float:
    """
    Normalize a model-reported confidence.

    - Missing/unparsable -> 0.7 for matches, 0.3 for rejections
    - Values above 1 are treated as percentages (85 -> 0.85)
    - Result is clamped to [0, 1]
    """
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.7 if matched else 0.3
    if confidence > 1:
        confidence = confidence / 100
    return round(clamp_confidence(confidence), 4)


def apply_match_decision(
    candidate: Candidate,
    matched: bool,
    confidence: float,
    reasoning: str,
    extracted_fields: Optional[Dict[str, Any]] = None,
) -> Candidate:
    """
    Return a copy of the candidate with a new matched/confidence/reasoning triple.

    The three fields are only ever written together. Rejections without a
    reason get an explicit placeholder so a rejection is always explained.
    """
    reasoning = (reasoning or "").strip()
    if not matched and not reasoning:
        reasoning = "Rejected without a stated reason"

    updated: Candidate = dict(candidate)  # type: ignore[assignment]
    updated["matched"] = bool(matched)
    updated["confidence"] = clamp_confidence(confidence)
    updated["reasoning"] = reasoning
    if extracted_fields is not None:
        updated["extracted_fields"] = extracted_fields
    return updated


def derive_email_id(email: EmailInput) -> str:
    """
    Stable identifier for an email.

    Uses the provider id when present, otherwise a hash of subject, sender and
    date so that re-running the same email yields the same candidate ids.
    """
    if email.get("id"):
        return str(email["id"])
    basis = "|".join([
        email.get("subject", "") or "",
        email.get("sender", "") or "",
        email.get("date", "") or "",
    ])
    return "email-" + hashlib.sha1(basis.encode("utf-8")).hexdigest()[:12]


def make_candidate_id(email_id: str, index: int) -> str:
    return f"{email_id}-cand-{index}"


def truncate_with_marker(text: str, limit: int, marker: str) -> str:
    """Truncate text to limit characters and append marker when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + marker


def get_domain(url: str) -> str:
    """Lower-cased host without a leading "www." ("" for unparsable input)."""
    try:
        host = urlparse(url).netloc.lower()
    except ValueError:
        return ""
    host = host.split("@")[-1].split(":")[0]
    return host[4:] if host.startswith("www.") else host


def domain_matches(url: str, domains) -> bool:
    """True when the URL's host equals or is a subdomain of any listed domain."""
    host = get_domain(url)
    if not host:
        return False
    for domain in domains:
        domain = domain.lower().lstrip(".")
        if domain.startswith("www."):
            domain = domain[4:]
        if host == domain or host.endswith("." + domain):
            return True
    return False
