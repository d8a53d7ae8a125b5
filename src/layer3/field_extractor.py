"""
Heuristic field extraction from validated job-posting text.

extract_structured_fields(text) is the only entry point other modules use,
so the regex heuristics below can be swapped for a model call later without
touching the research agent or the aggregator.
"""

import re
from typing import Dict, List, Optional, TypedDict

MAX_REQUIREMENTS = 10
MAX_TECHNOLOGIES = 15


class StructuredFields(TypedDict):
    requirements: List[str]
    technologies: List[str]
    deadline: Optional[str]


REQUIREMENT_HEADERS = re.compile(
    r"^\W*(requirements?|qualifications?|what you bring|what we expect|who you are|your profile|"
    r"we(?:'|’)re looking for|we are looking for|must have|krav|kvalifikationer|din profil|"
    r"vi forventer|vi søger|du har|du kan)\b[^\n]*$",
    re.IGNORECASE | re.MULTILINE,
)

INLINE_REQUIREMENTS = re.compile(r"requirements?[:\s]+([^\n]+)", re.IGNORECASE)

INLINE_TECHNOLOGIES = re.compile(r"(?:technologies|tech stack|teknologier)[:\s]+([^\n]+)", re.IGNORECASE)

DEADLINE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"(?:application\s+)?deadline[:\s]+([^\n]{3,60})",
        r"ansøgningsfrist[:\s]+([^\n]{3,60})",
        r"sidste\s+frist[:\s]+([^\n]{3,60})",
        r"apply\s+(?:by|before)[:\s]+([^\n]{3,60})",
    ]
]

BULLET_RE = re.compile(r"^\s*(?:[-*•·▪◦]|\d+[.)])\s+(.*)$")

# Canonical spelling -> lower-case aliases
KNOWN_TECHNOLOGIES: Dict[str, List[str]] = {
    "Python": ["python"],
    "Java": ["java"],
    "JavaScript": ["javascript", "js"],
    "TypeScript": ["typescript"],
    "C#": ["c#", "csharp"],
    ".NET": [".net", "dotnet", "asp.net"],
    "C++": ["c++"],
    "Go": ["golang"],
    "Rust": ["rust"],
    "Kotlin": ["kotlin"],
    "Swift": ["swift"],
    "PHP": ["php"],
    "Ruby": ["ruby", "rails"],
    "React": ["react", "react.js", "reactjs"],
    "Angular": ["angular"],
    "Vue": ["vue", "vue.js", "vuejs"],
    "Node.js": ["node.js", "nodejs", "node"],
    "Next.js": ["next.js", "nextjs"],
    "Django": ["django"],
    "FastAPI": ["fastapi"],
    "Flask": ["flask"],
    "Spring": ["spring", "spring boot"],
    "SQL": ["sql"],
    "PostgreSQL": ["postgresql", "postgres"],
    "MySQL": ["mysql"],
    "MongoDB": ["mongodb"],
    "Redis": ["redis"],
    "Docker": ["docker"],
    "Kubernetes": ["kubernetes", "k8s"],
    "AWS": ["aws", "amazon web services"],
    "Azure": ["azure"],
    "GCP": ["gcp", "google cloud"],
    "Terraform": ["terraform"],
    "Git": ["git"],
    "CI/CD": ["ci/cd"],
    "GraphQL": ["graphql"],
    "REST": ["restful", "rest api"],
    "Linux": ["linux"],
    "Kafka": ["kafka"],
    "RPA": ["rpa", "uipath", "power automate"],
}


def _clean_item(item: str) -> str:
    return re.sub(r"\s+", " ", item.strip(" \t-*•·:;,.")).strip()


def extract_requirements(text: str) -> List[str]:
    """
    Requirement bullet points.

    Prefers bullet lists under a requirements-style header; falls back to an
    inline "Requirements: a, b, c" line split on commas and bullets.
    """
    items: List[str] = []

    for header in REQUIREMENT_HEADERS.finditer(text):
        lines = text[header.end():].split("\n")
        started = False
        for line in lines[1:]:
            bullet = BULLET_RE.match(line)
            if bullet:
                started = True
                items.append(_clean_item(bullet.group(1)))
            elif line.strip() == "" and not started:
                continue
            else:
                break
        if len(items) >= MAX_REQUIREMENTS:
            break

    if not items:
        for match in INLINE_REQUIREMENTS.finditer(text):
            items.extend(_clean_item(part) for part in re.split(r"[,•;]|\s-\s", match.group(1)))

    items = [i for i in items if len(i) > 5]
    return list(dict.fromkeys(items))[:MAX_REQUIREMENTS]


def extract_technologies(text: str) -> List[str]:
    """Known technologies mentioned anywhere in the text, plus an explicit tech list."""
    haystack = text.lower()
    found: List[str] = []
    for canonical, aliases in KNOWN_TECHNOLOGIES.items():
        for alias in aliases:
            if re.search(rf"(?<![\w.#+]){re.escape(alias)}(?![\w#+]|\.\w)", haystack):
                found.append(canonical)
                break

    for match in INLINE_TECHNOLOGIES.finditer(text):
        for part in re.split(r"[,/•;]", match.group(1)):
            part = _clean_item(part)
            if 2 <= len(part) < 30:
                found.append(part)

    unique: List[str] = []
    seen = set()
    for tech in found:
        if tech.lower() not in seen:
            seen.add(tech.lower())
            unique.append(tech)
    return unique[:MAX_TECHNOLOGIES]


def extract_deadline(text: str) -> Optional[str]:
    for pattern in DEADLINE_PATTERNS:
        match = pattern.search(text)
        if match:
            return _clean_item(match.group(1))
    return None


def extract_structured_fields(text: str) -> StructuredFields:
    """
    Pull requirements, technologies and deadline out of posting text.

    Example:
        >>> extract_structured_fields("Requirements: Python, Docker experience\\nDeadline: 1 March 2025")
        {'requirements': ['Python', 'Docker experience'], 'technologies': ['Python', 'Docker'], 'deadline': '1 March 2025'}
    """
    text = text or ""
    return {
        "requirements": extract_requirements(text),
        "technologies": extract_technologies(text),
        "deadline": extract_deadline(text),
    }
