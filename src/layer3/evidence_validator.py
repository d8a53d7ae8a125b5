"""
Evidence validation checklist for the research agent.

A page only counts as evidence for a candidate when ALL checks pass:
  (a) the organization (or a normalized variant of its name) is mentioned
  (b) the role title or a recognized synonym is mentioned
  (c) if the candidate has a location, the page is not located in another country
  (d) the page is not a generic template / example job description

Any failed check means the page is rejected; the agent keeps looking.
"""

import re
from typing import Dict, List, Optional, Set

from src.common.state import Candidate, ValidationResult
from src.common.utils import get_domain
from src.layer3.title_synonyms import title_matches

LEGAL_SUFFIXES = [
    "a/s", "aps", "i/s", "k/s", "p/s", "amba", "a.m.b.a.",
    "as", "asa", "ab", "oy", "oyj",
    "gmbh", "ag", "se", "kg",
    "inc", "inc.", "incorporated", "llc", "l.l.c.", "ltd", "ltd.", "limited",
    "corp", "corp.", "corporation", "co.", "company", "plc", "pty", "pty ltd",
    "s.a.", "s.a", "sa", "b.v.", "bv", "n.v.", "nv",
]

# Words too generic to identify an organization on their own
GENERIC_FIRST_WORDS = {"the", "de", "det", "den", "danish", "dansk", "danske", "nordic", "global", "international"}

# Country -> lower-case names, local spellings and major cities
COUNTRY_GAZETTEER: Dict[str, List[str]] = {
    "denmark": [
        "denmark", "danmark", "copenhagen", "københavn", "kobenhavn", "aarhus", "århus", "odense",
        "aalborg", "esbjerg", "kolding", "vejle", "horsens", "randers", "roskilde", "herning",
        "silkeborg", "lyngby", "ballerup", "glostrup", "hellerup", "taastrup", "frederiksberg",
        "billund", "sønderborg", "fredericia", "hørsholm", "søborg",
    ],
    "sweden": ["sweden", "sverige", "stockholm", "gothenburg", "göteborg", "malmö", "malmo", "uppsala", "linköping"],
    "norway": ["norway", "norge", "oslo", "bergen", "trondheim", "stavanger"],
    "finland": ["finland", "suomi", "helsinki", "espoo", "tampere"],
    "germany": ["germany", "deutschland", "berlin", "munich", "münchen", "hamburg", "frankfurt", "cologne", "köln", "stuttgart", "düsseldorf"],
    "netherlands": ["netherlands", "nederland", "amsterdam", "rotterdam", "eindhoven", "utrecht", "the hague"],
    "united kingdom": ["united kingdom", "england", "scotland", "london", "manchester", "edinburgh", "birmingham"],
    "poland": ["poland", "polska", "warsaw", "warszawa", "krakow", "kraków", "wroclaw", "wrocław", "gdansk"],
    "spain": ["spain", "españa", "madrid", "barcelona", "valencia", "malaga"],
    "france": ["france", "paris", "lyon", "toulouse"],
    "india": ["india", "bangalore", "bengaluru", "mumbai", "pune", "hyderabad", "chennai", "new delhi", "noida", "gurgaon", "gurugram"],
    "united states": ["united states", "usa", "new york", "san francisco", "seattle", "austin", "boston", "chicago", "los angeles"],
    "canada": ["canada", "toronto", "vancouver", "montreal"],
    "ukraine": ["ukraine", "kyiv", "kiev", "lviv"],
    "portugal": ["portugal", "lisbon", "lisboa", "porto"],
}

TEMPLATE_URL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"/hire/job-description",
        r"job-descriptions?/templates?",
        r"job-description-templates?",
        r"/templates?/job",
        r"job-description-(sample|example)",
        r"/resources/job-descriptions?",
        r"/hiring-guides?/",
        r"/career-advice/",
        r"/career-guide",
    ]
]

TEMPLATE_TEXT_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"job description template",
        r"sample job description",
        r"example job description",
        r"use this (job description )?template",
        r"customi[sz]e this (template|job description)",
        r"\[company name\]",
        r"\{company( name)?\}",
        r"<company name>",
    ]
]


def _contains_phrase(haystack: str, phrase: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(phrase)}(?!\w)", haystack) is not None


# ===== (a) ORGANIZATION =====

def company_name_variants(company_name: str) -> List[str]:
    """
    Lower-case name variants used to find the organization in page text.

    Generates:
    1. The full name
    2. The name with legal suffixes removed (Acme A/S -> acme)
    3. The no-space form (Acme Robotics -> acmerobotics)
    4. The first word when it is distinctive enough (Acme Robotics -> acme)
    """
    name = re.sub(r"\s+", " ", (company_name or "").strip().lower())
    if not name:
        return []

    variants = [name]

    base = name
    changed = True
    while changed:
        changed = False
        for suffix in sorted(LEGAL_SUFFIXES, key=len, reverse=True):
            if base.endswith(" " + suffix) or base.endswith("," + suffix):
                base = base[: -len(suffix)].rstrip(" ,")
                changed = True
                break
    if base:
        variants.append(base)

    no_space = re.sub(r"[\s\-.&]+", "", base)
    if len(no_space) >= 3:
        variants.append(no_space)

    words = base.split(" ")
    if len(words) > 1 and len(words[0]) >= 3 and words[0] not in GENERIC_FIRST_WORDS:
        variants.append(words[0])

    return list(dict.fromkeys(v for v in variants if v))


def company_mentioned(company_name: str, text: str, url: str = "") -> bool:
    """True when any name variant appears in the text or in the page's domain."""
    haystack = (text or "").lower()
    domain = get_domain(url).replace("-", "")
    for variant in company_name_variants(company_name):
        if _contains_phrase(haystack, variant):
            return True
        if " " not in variant and len(variant) >= 4 and variant in domain:
            return True
    return False


# ===== (c) LOCATION =====

# "Location: ..." style lines, in English and Danish
LOCATION_LINE_PATTERN = re.compile(
    r"^\s*(?:job\s+)?(?:location|lokation|arbejdssted|placering)\s*[:\-–]\s*(.+)$",
    re.IGNORECASE | re.MULTILINE,
)

# Leading non-empty lines treated as the page title / header
HEADER_LINE_COUNT = 2


def countries_mentioned(text: str) -> Set[str]:
    """Countries whose name or major cities appear in the text."""
    haystack = (text or "").lower()
    found = set()
    for country, names in COUNTRY_GAZETTEER.items():
        if any(_contains_phrase(haystack, n) for n in names):
            found.add(country)
    return found


def explicit_location_countries(text: str) -> Set[str]:
    """
    Countries named where the page states its own location.

    Location lines win over the header; the header is only consulted when
    the page has no location line naming a known country.
    """
    from_lines = set()
    for match in LOCATION_LINE_PATTERN.finditer(text or ""):
        from_lines |= countries_mentioned(match.group(1))
    if from_lines:
        return from_lines

    header = [line for line in (text or "").splitlines() if line.strip()][:HEADER_LINE_COUNT]
    return countries_mentioned("\n".join(header))


def page_countries(text: str) -> Set[str]:
    """The page's explicit location countries, or every country it mentions when it states none."""
    return explicit_location_countries(text) or countries_mentioned(text)


def location_consistent(expected_location: Optional[str], text: str) -> bool:
    """
    False when the page's location does not include the expected country.

    An explicit location (location line or header) decides on its own, so a
    posting located abroad fails even if the body mentions the expected
    country elsewhere. Unknown expected locations and pages without any
    location pass.
    """
    expected = countries_mentioned(expected_location or "")
    if not expected:
        return True
    mentioned = page_countries(text)
    if not mentioned:
        return True
    return bool(expected & mentioned)


# ===== (d) TEMPLATE PAGES =====

def is_template_page(url: str, text: str) -> bool:
    if any(p.search(url or "") for p in TEMPLATE_URL_PATTERNS):
        return True
    return any(p.search(text or "") for p in TEMPLATE_TEXT_PATTERNS)


# ===== CHECKLIST =====

def validate_evidence(
    url: str,
    text: str,
    candidate: Candidate,
    extra_synonyms: Optional[Dict[str, List[str]]] = None,
) -> ValidationResult:
    """
    Run the full checklist on one extracted page.

    Args:
        url: Page URL
        text: Extracted page text (page title included)
        candidate: Candidate being researched
        extra_synonyms: Caller-supplied title synonyms

    Returns:
        ValidationResult with valid=True only if every check passed
    """
    failures: List[str] = []

    company_found = company_mentioned(candidate["company"], text, url)
    if not company_found:
        failures.append(f"organization '{candidate['company']}' not mentioned")

    title_found = title_matches(candidate["title"], text, extra_synonyms)
    if not title_found:
        failures.append(f"title '{candidate['title']}' or a synonym not mentioned")

    location_ok = location_consistent(candidate.get("location"), text)
    if not location_ok:
        failures.append(
            f"location mismatch: expected {candidate.get('location')}, page mentions "
            f"{', '.join(sorted(page_countries(text)))}"
        )

    not_template = not is_template_page(url, text)
    if not not_template:
        failures.append("generic template / example page")

    return {
        "valid": not failures,
        "company_found": company_found,
        "title_found": title_found,
        "location_ok": location_ok,
        "not_template": not_template,
        "failures": failures,
    }
