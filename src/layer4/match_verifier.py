"""
Layer 4: Match Verifier

Re-checks each researched candidate's match decision against the full
evidence text found in Layer 3. Catches what a short email snippet hides:
explicit experience thresholds, or role-type keywords that only appear in the
full posting.

Decision flow per candidate:
1. No validated evidence -> keep the decision, discount confidence, annotate
2. Otherwise one LLM call under the same caller criteria
3. Caller-supplied experience policy applied in code:
   - above experience_ceiling_years -> hard reject, changed_reason set
   - in [borderline_min_years, ceiling] -> confidence clamped into
     borderline_confidence_range and flagged
4. New match triple replaces the old one; extracted fields are merged
"""

import re
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.common.error_handling import ErrorCollector
from src.common.llm_factory import invoke_structured
from src.common.logger import get_logger
from src.common.pipeline_config import PipelineConfig, VerificationPolicy
from src.common.state import Candidate, EvidenceRecord, VerificationResult, WorkflowState
from src.common.structured_logger import LayerContext, StructuredLogger
from src.common.utils import apply_match_decision, clamp_confidence, normalize_confidence, truncate_with_marker

MAX_EVIDENCE_CHARS = 8000
UNVERIFIED_NOTE = " (No full description available for re-evaluation)"


# ===== PROMPT DESIGN =====

SYSTEM_PROMPT = """You are re-verifying a job match decision using the FULL job description.

An earlier pass saw only a short email snippet. Now check the complete posting for
disqualifiers that the snippet could not show: explicit years-of-experience
requirements, seniority levels, and role-type keywords buried in the description.

=== USER'S MATCH CRITERIA ===
{match_criteria}

=== HARD DISQUALIFIERS (reject ONLY for these) ===
{hard_disqualifiers}

=== USER INTENT ===
{user_intent}

RULES:
1. Judge the ROLE, never the employer's industry
2. Keep the match if nothing in the full text contradicts it
3. Report the minimum years of experience the posting asks for in "required_years"
   (null if the posting states none)
4. If your decision differs from the original, explain why in "changed_reason"

Return ONLY a JSON object:
{{
  "still_matches": true,
  "confidence": 0.0-1.0,
  "reasoning": "Why the decision holds or changed",
  "changed_reason": null,
  "required_years": null,
  "extracted_fields": {{
    "deadline": null,
    "experience_level": null,
    "required_technologies": [],
    "nice_to_have_technologies": [],
    "competencies": [],
    "work_type": null,
    "location": null,
    "salary": null
  }}
}}"""

USER_PROMPT_TEMPLATE = """=== ORIGINAL DECISION ===
Job: {title} at {company}
Location: {location}
Matched: {matched}
Confidence: {confidence:.2f}
Reasoning: {reasoning}

=== FULL JOB DESCRIPTION (from {source_url}) ===
{evidence}

Re-evaluate the match."""


# ===== OUTPUT SCHEMA =====

class VerifiedFields(BaseModel):
    model_config = ConfigDict(extra="allow")

    deadline: Optional[str] = None
    experience_level: Optional[str] = None
    required_technologies: List[str] = Field(default_factory=list)
    nice_to_have_technologies: List[str] = Field(default_factory=list)
    competencies: List[str] = Field(default_factory=list)
    work_type: Optional[str] = None   # onsite | hybrid | remote
    location: Optional[str] = None
    salary: Optional[str] = None

    @field_validator("required_technologies", "nice_to_have_technologies", "competencies", mode="before")
    @classmethod
    def coerce_list(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return [str(item) for item in v if item]


class VerificationOutput(BaseModel):
    still_matches: bool
    confidence: Any = None
    reasoning: str = ""
    changed_reason: Optional[str] = None
    required_years: Optional[float] = None
    extracted_fields: VerifiedFields = Field(default_factory=VerifiedFields)

    @field_validator("reasoning", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or ""

    @field_validator("required_years", mode="before")
    @classmethod
    def parse_years(cls, v):
        """Accept 3, "3", "3+ years", "3-5 years" (lower bound)."""
        if v is None or isinstance(v, (int, float)):
            return v
        match = re.search(r"\d+(?:[.,]\d+)?", str(v))
        return float(match.group(0).replace(",", ".")) if match else None

    @field_validator("extracted_fields", mode="before")
    @classmethod
    def none_to_default(cls, v):
        return v or {}


# ===== POLICY =====

def apply_experience_policy(
    matched: bool,
    confidence: float,
    reasoning: str,
    required_years: Optional[float],
    policy: VerificationPolicy,
) -> Tuple[bool, float, str, Optional[str], bool]:
    """
    Apply caller experience thresholds to a verified decision.

    Returns:
        (matched, confidence, reasoning, policy_reason, borderline)
        policy_reason is set only for a hard rejection.
    """
    if not matched or required_years is None:
        return matched, confidence, reasoning, None, False

    ceiling = policy.experience_ceiling_years
    if ceiling is not None and required_years > ceiling:
        reason = f"Requires {required_years:g}+ years of experience (ceiling is {ceiling:g})"
        return False, confidence, f"{reasoning} {reason}".strip(), reason, False

    floor = policy.borderline_min_years
    if floor is not None and required_years >= floor:
        low, high = policy.borderline_confidence_range
        adjusted = min(max(confidence, low), high)
        note = f"Borderline experience requirement ({required_years:g} years)"
        return matched, adjusted, f"{reasoning} {note}".strip(), None, True

    return matched, confidence, reasoning, None, False


def merge_fields(old: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, Any]:
    """New non-empty values overwrite; classifier fields are otherwise kept."""
    merged = dict(old or {})
    for key, value in (new or {}).items():
        if value in (None, "", [], {}):
            continue
        merged[key] = value
    merged["_reverified"] = True
    return merged


# ===== VERIFIER =====

class MatchVerifier:
    """Verification LLM pass for one run."""

    def __init__(self, llm: Any, config: PipelineConfig):
        self.llm = llm
        self.config = config
        self.policy = config.verification
        self.logger = get_logger(__name__, layer="layer4")

    def _system_prompt(self) -> str:
        disqualifiers = "\n".join(f"- {d}" for d in self.config.hard_disqualifiers) or "- None specified"
        return SYSTEM_PROMPT.format(
            match_criteria=self.config.match_criteria or "Not specified",
            hard_disqualifiers=disqualifiers,
            user_intent=self.config.user_intent or "Not specified",
        )

    def _user_prompt(self, candidate: Candidate, record: EvidenceRecord) -> str:
        source_url = (record.get("primary_source") or {}).get("url", "unknown source")
        return USER_PROMPT_TEMPLATE.format(
            title=candidate["title"],
            company=candidate["company"],
            location=candidate.get("location") or "Not specified",
            matched=candidate["matched"],
            confidence=candidate["confidence"],
            reasoning=candidate["reasoning"] or "(none)",
            source_url=source_url,
            evidence=truncate_with_marker(record["evidence_text"], MAX_EVIDENCE_CHARS, "\n... [truncated]"),
        )

    def skip_unverified(self, candidate: Candidate) -> Tuple[Candidate, VerificationResult]:
        """No evidence: keep the decision, discount confidence, say so."""
        confidence = clamp_confidence(candidate["confidence"] * self.policy.unverified_discount)
        reasoning = candidate["reasoning"]
        if UNVERIFIED_NOTE not in reasoning:
            reasoning = f"{reasoning}{UNVERIFIED_NOTE}"
        updated = apply_match_decision(candidate, candidate["matched"], confidence, reasoning)
        return updated, {
            "candidate_id": candidate["id"],
            "matched": updated["matched"],
            "confidence": updated["confidence"],
            "reasoning": updated["reasoning"],
            "changed_reason": None,
            "required_years": None,
            "extracted_fields": {},
            "verified": False,
        }

    def verify(self, candidate: Candidate, record: EvidenceRecord) -> Tuple[Candidate, VerificationResult]:
        """
        Verify one candidate against its evidence record.

        Raises:
            StructuredOutputError: Verification output unparsable
        """
        if not record["found"] or not record["evidence_text"]:
            return self.skip_unverified(candidate)

        output = invoke_structured(
            self.llm,
            self._system_prompt(),
            self._user_prompt(candidate, record),
            VerificationOutput,
            layer="layer4",
        )

        confidence = normalize_confidence(output.confidence, output.still_matches)
        matched, confidence, reasoning, policy_reason, borderline = apply_experience_policy(
            output.still_matches,
            confidence,
            output.reasoning,
            output.required_years,
            self.policy,
        )

        changed_reason: Optional[str] = None
        if matched != candidate["matched"]:
            changed_reason = (
                policy_reason
                or output.changed_reason
                or "Full job description contradicts the original decision"
            )

        new_fields = output.extracted_fields.model_dump()
        new_fields["required_years"] = output.required_years
        if borderline:
            new_fields["experience_borderline"] = True
        if changed_reason:
            new_fields["changed_reason"] = changed_reason

        updated = apply_match_decision(
            candidate,
            matched,
            confidence,
            reasoning,
            extracted_fields=merge_fields(candidate.get("extracted_fields") or {}, new_fields),
        )
        return updated, {
            "candidate_id": candidate["id"],
            "matched": updated["matched"],
            "confidence": updated["confidence"],
            "reasoning": updated["reasoning"],
            "changed_reason": changed_reason,
            "required_years": output.required_years,
            "extracted_fields": new_fields,
            "verified": True,
        }

    def verify_all(
        self,
        candidates: List[Candidate],
        records: List[EvidenceRecord],
        errors: ErrorCollector,
    ) -> Tuple[List[Candidate], List[VerificationResult]]:
        """
        Verify every candidate that has an evidence record.

        Candidates without a record pass through untouched. A failed
        verification call keeps the classifier's decision and records a
        non-fatal error.
        """
        by_id = {r["candidate_id"]: r for r in records}
        updated: List[Candidate] = []
        results: List[VerificationResult] = []

        for candidate in candidates:
            record = by_id.get(candidate["id"])
            if record is None:
                updated.append(candidate)
                continue
            try:
                new_candidate, result = self.verify(candidate, record)
            except Exception as e:
                self.logger.warning(f"Verification failed for {candidate['id']}: {e}")
                errors.add_error(
                    layer="layer4",
                    operation="verification",
                    message=f"{candidate['id']}: {e}",
                )
                updated.append(candidate)
                continue

            if result["changed_reason"]:
                self.logger.info(f"  ✗ {candidate['title']} at {candidate['company']}: {result['changed_reason']}")
            else:
                self.logger.info(
                    f"  {'✓' if new_candidate['matched'] else '✗'} {candidate['title']} at "
                    f"{candidate['company']} ({new_candidate['confidence']:.0%})"
                    + ("" if result["verified"] else " [unverified]")
                )
            updated.append(new_candidate)
            results.append(result)

        return updated, results


def match_verifier_node(
    state: WorkflowState,
    llm: Any,
    events: Optional[StructuredLogger] = None,
) -> Dict[str, Any]:
    """LangGraph node function for Layer 4: Match Verification."""
    log = get_logger(__name__, run_id=state.get("run_id"), layer="layer4")
    config = PipelineConfig.from_dict(state.get("config"))
    verifier = MatchVerifier(llm, config)
    errors = ErrorCollector()

    candidates = state.get("candidates") or []
    records = state.get("research_results") or []
    log.info(f"Verifying {len(records)} researched candidate(s)")

    if events is None:
        updated, results = verifier.verify_all(candidates, records, errors)
    else:
        with LayerContext(events, 4) as ctx:
            updated, results = verifier.verify_all(candidates, records, errors)
            ctx.add_metadata("verified", sum(1 for r in results if r["verified"]))
            ctx.add_metadata("flipped", sum(1 for r in results if r["changed_reason"]))

    updates: Dict[str, Any] = {
        "candidates": updated,
        "verifications": results,
        "phase": "verifying",
    }
    if errors.errors:
        updates["errors"] = errors.get_error_messages()
    return updates
