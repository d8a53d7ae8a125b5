"""
Sample emails, postings and model answers for pipeline tests.

The Acme A/S job alert carries two listings:
- Backend Developer, Copenhagen (software role, should match)
- PLC Programmer, Aarhus (non-software discipline, rejected by the classifier)
"""

from typing import Any, Dict

ACME_CAREERS_URL = "https://acme.dk/careers/backend-developer"

ACME_POSTING = """Backend Developer - Acme A/S

Location: Copenhagen, Denmark

We are looking for a Backend Developer to join our platform team.

Requirements:
- 2+ years of professional Python experience
- Experience with Docker and PostgreSQL
- Good communication skills in English

Deadline: 1 March 2025
"""

ACME_EMAIL_HTML = """
<html><head><style>p {color: red}</style></head><body>
<h2>New jobs for you</h2>
<div>
  <p><a href="https://www.jobindex.dk/vis-job/h123">Backend Developer</a> - Acme A/S, Copenhagen</p>
  <p>Python, Docker. 2+ years of experience.</p>
</div>
<div>
  <p><a href="https://www.jobindex.dk/vis-job/h456">PLC Programmer</a> - Acme A/S, Aarhus</p>
  <p>Siemens PLC programming for production lines.</p>
</div>
<p><a href="https://www.jobindex.dk/unsubscribe?id=1">Unsubscribe</a></p>
<img src="https://www.jobindex.dk/pixel.gif">
</body></html>
"""

ACME_EMAIL: Dict[str, Any] = {
    "id": "msg-acme-1",
    "subject": "New jobs matching your search",
    "sender": "Jobindex <noreply@jobindex.dk>",
    "recipients": ["user@example.com"],
    "date": "2025-02-01T08:00:00Z",
    "html_body": ACME_EMAIL_HTML,
}

SOFTWARE_CONFIG: Dict[str, Any] = {
    "id": "software-roles",
    "match_criteria": "Software development roles, max 5 years experience required",
    "extraction_fields": "deadline, technologies, work type",
    "hard_disqualifiers": ["Non-software technical disciplines (PLC, SCADA, electrical)"],
    "verification": {"experience_ceiling_years": 5, "borderline_min_years": 3},
}

ACME_CLASSIFICATION: Dict[str, Any] = {
    "thinking": "Two listings. Backend Developer is software. PLC Programmer is a hard disqualifier.",
    "is_opportunity_email": True,
    "email_type": "job_listing",
    "candidates": [
        {
            "company": "Acme A/S",
            "title": "Backend Developer",
            "location": "Copenhagen",
            "technologies": ["Python", "Docker"],
            "source_url": "https://www.jobindex.dk/vis-job/h123",
            "matched": True,
            "confidence": 0.8,
            "reasoning": "Software development role with 2+ years experience",
            "extracted_fields": {"work_type": "onsite"},
        },
        {
            "company": "Acme A/S",
            "title": "PLC Programmer",
            "location": "Aarhus",
            "technologies": ["Siemens PLC"],
            "source_url": "https://www.jobindex.dk/vis-job/h456",
            "matched": False,
            "confidence": 0.9,
            "reasoning": "REJECTED: PLC programming is a non-software technical discipline (hard disqualifier)",
            "extracted_fields": {},
        },
    ],
    "entities": {
        "companies": ["Acme A/S"],
        "technologies": ["Python", "Docker", "Siemens PLC"],
        "locations": ["Copenhagen", "Aarhus"],
        "positions": ["Backend Developer", "PLC Programmer"],
        "skills": [],
        "urls": [],
    },
    "summary": "Job alert with two Acme A/S listings",
}

NO_MATCH_CLASSIFICATION: Dict[str, Any] = {
    "is_opportunity_email": True,
    "email_type": "job_listing",
    "candidates": [
        {
            "company": "Acme A/S",
            "title": "PLC Programmer",
            "location": "Aarhus",
            "matched": False,
            "confidence": 0.9,
            "reasoning": "REJECTED: PLC programming (hard disqualifier)",
        },
    ],
    "summary": "One PLC listing",
}

ACME_VERIFICATION: Dict[str, Any] = {
    "still_matches": True,
    "confidence": 0.85,
    "reasoning": "Full posting asks for 2+ years of Python, within criteria",
    "changed_reason": None,
    "required_years": 2,
    "extracted_fields": {
        "deadline": "1 March 2025",
        "experience_level": "mid",
        "required_technologies": ["Python", "Docker", "PostgreSQL"],
        "nice_to_have_technologies": [],
        "competencies": ["communication"],
        "work_type": "onsite",
        "location": "Copenhagen",
        "salary": None,
    },
}
