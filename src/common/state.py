"""
State schema for the email opportunity pipeline.

This defines the data contract for the 5-layer LangGraph pipeline.
Each layer reads from the shared state and returns a delta; list fields
annotated with operator.add are appended by the graph, all other fields
are replaced.
"""

import operator
from typing import Annotated, Any, Dict, List, Literal, Optional, TypedDict

Phase = Literal[
    "init",
    "normalizing",
    "classifying",
    "researching",
    "verifying",
    "aggregating",
    "complete",
    "error",
]

EmailType = Literal["job_listing", "newsletter", "application_status", "other"]

SourceType = Literal["career_page", "job_board", "company_page", "other"]

StopReason = Literal[
    "validated",             # Checklist passed on a primary source
    "iteration_budget",      # Tool-call ceiling reached
    "context_budget",        # Accumulated observations exceeded the size limit
    "strategies_exhausted",  # Every query variant tried without a validated page
    "agent_error",           # Research task raised; substituted by the fan-out
]


class EmailInput(TypedDict, total=False):
    """Inbound email as handed over by the mail client. Never mutated."""
    id: str                 # Provider message id (derived if missing)
    subject: str
    sender: str
    recipients: List[str]
    date: str               # ISO-8601 or RFC 2822, passed through
    html_body: str
    text_body: str          # Plain-text alternative part, if any
    snippet: str


class NormalizedEmail(TypedDict):
    """Layer 1 output: clean text + filtered opportunity URLs."""
    email_id: str
    subject: str
    sender: str
    date: str
    plain_text: str
    urls: List[str]
    source_hint: str        # "jobindex" | "linkedin" | "indeed" | "generic" ...


class ExtractedEntities(TypedDict):
    companies: List[str]
    technologies: List[str]
    locations: List[str]
    positions: List[str]
    skills: List[str]
    urls: List[str]


class Candidate(TypedDict):
    """
    One opportunity found in the email.

    matched/confidence/reasoning form one decision and are always replaced
    together (see src.common.utils.apply_match_decision).
    """
    id: str                 # "{email_id}-cand-{index}"
    company: str
    title: str
    location: Optional[str]
    technologies: List[str]
    source_url: Optional[str]   # May point behind a login wall
    matched: bool
    confidence: float       # Always within [0, 1]
    reasoning: str          # Non-empty whenever matched is False
    extracted_fields: Dict[str, Any]


class SearchTask(TypedDict):
    """Prioritized query consumed by the research agent."""
    query: str
    entity: str
    priority: int           # Higher runs first
    kind: Literal["general", "company", "job", "synonym"]
    exclude_domains: List[str]


class WebSource(TypedDict):
    url: str
    title: str
    content: str            # Preview only (first 200 chars) in the sources list
    score: float
    is_primary: bool
    source_type: SourceType


class ValidationResult(TypedDict):
    """Outcome of the evidence checklist for one page."""
    valid: bool
    company_found: bool
    title_found: bool
    location_ok: bool
    not_template: bool
    failures: List[str]     # Human-readable reason per failed check


class EvidenceRecord(TypedDict):
    """Research result for one matched Candidate."""
    candidate_id: str
    company: str
    title: str
    found: bool
    primary_source: Optional[WebSource]
    sources: List[WebSource]        # Deduplicated by URL
    evidence_text: str              # Full validated text ("" when not found)
    requirements: List[str]
    technologies: List[str]
    deadline: Optional[str]
    iterations: int                 # Tool invocations used
    reasoning: str                  # Audit trace
    stop_reason: StopReason
    validation: Optional[ValidationResult]


class VerificationResult(TypedDict):
    """Layer 4 output for one researched Candidate."""
    candidate_id: str
    matched: bool
    confidence: float
    reasoning: str
    changed_reason: Optional[str]   # Only when matched flipped
    required_years: Optional[float]
    extracted_fields: Dict[str, Any]
    verified: bool                  # False when no evidence was available


class WorkflowState(TypedDict, total=False):
    """
    LangGraph state for one pipeline run.

    Doubles as the WorkflowRun returned to callers.
    """
    # Identity / inputs
    run_id: str
    email: EmailInput
    config: Dict[str, Any]          # PipelineConfig.to_dict()

    # Layer 1
    normalized: Optional[NormalizedEmail]

    # Layer 2
    email_type: Optional[EmailType]
    is_opportunity_email: bool
    candidates: List[Candidate]     # Replaced by every stage that touches them
    entities: Optional[ExtractedEntities]
    classifier_summary: str

    # Layer 3
    research_results: List[EvidenceRecord]

    # Layer 4
    verifications: List[VerificationResult]

    # Layer 5
    has_matches: bool
    summary: str

    # Run bookkeeping
    phase: Phase
    errors: Annotated[List[str], operator.add]
    success: bool
    processing_time_ms: int


WorkflowRun = WorkflowState
