"""
Layer 5: Aggregator

Pure data shaping, no decisions:
- Attaches each EvidenceRecord's findings to its candidate's extracted_fields
- Recomputes has_matches from the final candidate list
- Builds the human-readable summary used for logs and audit
"""

from typing import Any, Dict, List, Optional

from src.common.logger import get_logger
from src.common.state import Candidate, EvidenceRecord, WorkflowState
from src.common.structured_logger import LayerContext, StructuredLogger

JOB_DESCRIPTION_PREVIEW_CHARS = 2000
NO_MATCHES_SUMMARY = "No matching jobs found in this email."


def merge_research(candidate: Candidate, record: Optional[EvidenceRecord]) -> Candidate:
    """
    Copy research findings into the candidate's extracted_fields.

    Technologies are unioned (candidate's own first). The match triple is
    never touched here.
    """
    if record is None:
        return candidate

    merged: Candidate = dict(candidate)  # type: ignore[assignment]
    fields = dict(candidate.get("extracted_fields") or {})

    technologies = list(candidate.get("technologies") or [])
    seen = {t.lower() for t in technologies}
    for tech in record["technologies"]:
        if tech.lower() not in seen:
            seen.add(tech.lower())
            technologies.append(tech)
    merged["technologies"] = technologies

    primary = record.get("primary_source")
    fields["research_found"] = record["found"]
    fields["research_iterations"] = record["iterations"]
    fields["research_stop_reason"] = record["stop_reason"]
    fields["sources_searched"] = len(record["sources"])
    if primary:
        fields["research_source"] = primary["url"]
        fields["research_source_type"] = primary["source_type"]
    if record["evidence_text"]:
        fields["job_description"] = record["evidence_text"][:JOB_DESCRIPTION_PREVIEW_CHARS]
    if record["requirements"]:
        fields["requirements"] = record["requirements"]
    if record["deadline"] and not fields.get("deadline"):
        fields["deadline"] = record["deadline"]

    merged["extracted_fields"] = fields
    return merged


def has_matches(candidates: List[Candidate]) -> bool:
    return any(c["matched"] for c in candidates)


def build_summary(candidates: List[Candidate], records: List[EvidenceRecord]) -> str:
    """
    Human-readable run summary.

    Example:
        Found 1 matching job(s):

        ✓ Backend Developer at Acme A/S (Copenhagen)
          Confidence: 85%
          Source: https://acme.dk/careers/backend-developer... (career_page)
          Deadline: 1 March 2025
          Tech: Python, Docker
    """
    matched = [c for c in candidates if c["matched"]]
    if not matched:
        return NO_MATCHES_SUMMARY

    by_id = {r["candidate_id"]: r for r in records}
    lines = [f"Found {len(matched)} matching job(s):", ""]

    # Researched candidates in classifier order; a candidate that research
    # touched but verification rejected still shows, with a cross
    shown = [c for c in candidates if c["matched"] or c["id"] in by_id]
    for candidate in shown:
        glyph = "✓" if candidate["matched"] else "✗"
        location = f" ({candidate['location']})" if candidate.get("location") else ""
        lines.append(f"{glyph} {candidate['title']} at {candidate['company']}{location}")
        lines.append(f"  Confidence: {candidate['confidence']:.0%}")

        fields = candidate.get("extracted_fields") or {}
        record = by_id.get(candidate["id"])
        if record and record.get("primary_source"):
            source = record["primary_source"]
            lines.append(f"  Source: {source['url'][:50]}... ({source['source_type']})")
        elif record:
            lines.append(f"  Research: No public listing found after {record['iterations']} iterations")

        if fields.get("deadline"):
            lines.append(f"  Deadline: {fields['deadline']}")
        if candidate.get("technologies"):
            lines.append(f"  Tech: {', '.join(candidate['technologies'][:5])}")
        if not candidate["matched"] and fields.get("changed_reason"):
            lines.append(f"  Rejected after verification: {fields['changed_reason']}")
        lines.append("")

    return "\n".join(lines).rstrip()


def aggregate(candidates: List[Candidate], records: List[EvidenceRecord]) -> Dict[str, Any]:
    by_id = {r["candidate_id"]: r for r in records}
    merged = [merge_research(c, by_id.get(c["id"])) for c in candidates]
    return {
        "candidates": merged,
        "has_matches": has_matches(merged),
        "summary": build_summary(merged, records),
    }


def aggregator_node(
    state: WorkflowState,
    events: Optional[StructuredLogger] = None,
) -> Dict[str, Any]:
    """LangGraph node function for Layer 5: Aggregator."""
    log = get_logger(__name__, run_id=state.get("run_id"), layer="layer5")
    candidates = state.get("candidates") or []
    records = state.get("research_results") or []

    if events is None:
        updates = aggregate(candidates, records)
    else:
        with LayerContext(events, 5) as ctx:
            updates = aggregate(candidates, records)
            ctx.add_metadata("matched", sum(1 for c in updates["candidates"] if c["matched"]))

    for line in updates["summary"].split("\n"):
        log.info(line)

    updates["phase"] = "complete"
    return updates
