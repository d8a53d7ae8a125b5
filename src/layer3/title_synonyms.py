"""
Job-title synonym table (English / Danish).

Used by the research agent in two places:
- Query variants: retry searches with localized title equivalents
- Evidence validation: accept a page whose title is a recognized synonym
"""

import re
from typing import Dict, Iterable, List, Optional

# Each group lists interchangeable titles. Longer phrases are matched first.
SYNONYM_GROUPS: List[List[str]] = [
    ["software developer", "softwareudvikler", "software-udvikler", "software engineer", "softwareingeniør"],
    ["backend developer", "backend-udvikler", "back-end developer", "backend engineer"],
    ["frontend developer", "frontend-udvikler", "front-end developer", "frontend engineer"],
    ["full stack developer", "fullstack developer", "full-stack developer", "fullstack-udvikler"],
    ["web developer", "webudvikler", "web-udvikler"],
    ["app developer", "appudvikler", "app-udvikler", "mobile developer"],
    ["it developer", "it-udvikler", "it udvikler"],
    ["it consultant", "it-konsulent", "it konsulent"],
    ["system developer", "systemudvikler", "systems developer"],
    ["automation developer", "automatiseringsudvikler", "rpa developer", "rpa-udvikler"],
    ["solution architect", "løsningsarkitekt", "solutions architect"],
    ["architect", "arkitekt"],
    ["developer", "udvikler", "programmer", "programmør"],
    ["student assistant", "studentermedhjælper", "studentermedarbejder", "student worker"],
    ["intern", "praktikant", "internship"],
]

# Words that qualify a title without changing the role
TITLE_NOISE_WORDS = {
    "senior", "junior", "lead", "erfaren", "ny", "nyuddannet", "graduate",
    "m/k", "m/f", "m/f/d", "w/m/d", "h/f", "the", "and", "og", "til", "for", "a", "an",
}


def _normalize(text: str) -> str:
    text = text.lower().replace("–", "-").replace("—", "-")
    text = re.sub(r"[()\[\],|/]+", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def _contains_phrase(haystack: str, phrase: str) -> bool:
    return re.search(rf"(?<![\w-]){re.escape(phrase)}(?![\w-])", haystack) is not None


def build_groups(extra: Optional[Dict[str, List[str]]] = None) -> List[List[str]]:
    """Default groups plus caller-supplied ones ({"udvikler": ["developer"]})."""
    groups = [list(g) for g in SYNONYM_GROUPS]
    for term, equivalents in (extra or {}).items():
        groups.insert(0, [_normalize(term)] + [_normalize(e) for e in equivalents])
    return groups


def title_variants(title: str, extra: Optional[Dict[str, List[str]]] = None, limit: int = 6) -> List[str]:
    """
    Alternative spellings of a title, original first.

    Example:
        >>> title_variants("Softwareudvikler")[:2]
        ['softwareudvikler', 'software developer']
    """
    base = _normalize(title)
    if not base:
        return []

    variants = [base]
    for group in build_groups(extra):
        for term in sorted(group, key=len, reverse=True):
            if _contains_phrase(base, term):
                for alternative in group:
                    if alternative != term:
                        variants.append(base.replace(term, alternative))
                break
    return list(dict.fromkeys(variants))[:limit]


def _significant_tokens(title: str) -> List[str]:
    return [t for t in re.split(r"[\s-]+", title) if len(t) > 2 and t not in TITLE_NOISE_WORDS]


def title_matches(title: str, text: str, extra: Optional[Dict[str, List[str]]] = None) -> bool:
    """
    True when the text mentions the title or a recognized synonym.

    A variant counts when it appears as a phrase, or when every significant
    word of it (seniority and gender markers removed) appears in the text.
    """
    haystack = _normalize(text)
    if not haystack:
        return False

    for variant in title_variants(title, extra, limit=20):
        if _contains_phrase(haystack, variant):
            return True
        tokens = _significant_tokens(variant)
        if tokens and all(_contains_phrase(haystack, token) for token in tokens):
            return True
    return False


def synonym_terms(title: str, extra: Optional[Dict[str, List[str]]] = None) -> Iterable[str]:
    """Variants other than the title itself (used for retry queries)."""
    return title_variants(title, extra)[1:]
