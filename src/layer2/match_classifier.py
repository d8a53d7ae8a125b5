"""
Layer 2: Extraction & Match Classifier

One structured LLM call that classifies the email, extracts every
opportunity in it and gives each a preliminary match decision.

- Inclusive policy: ambiguous listings are matched at 0.5-0.7 confidence
- Rejections only for caller-defined hard disqualifiers about the role
- Unparsable output is a stage failure (the run stops in "error")

Long digests can optionally be split into chunks (see email_splitter) that are
classified in parallel batches and merged by organization + title.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from src.common.config import Config
from src.common.error_handling import StageFailure
from src.common.llm_factory import invoke_structured
from src.common.logger import get_logger
from src.common.pipeline_config import PipelineConfig
from src.common.state import Candidate, ExtractedEntities, NormalizedEmail, WorkflowState
from src.common.structured_logger import LayerContext, StructuredLogger
from src.common.utils import (
    apply_match_decision,
    make_candidate_id,
    normalize_confidence,
    run_async,
    truncate_with_marker,
)
from src.layer2.email_splitter import should_split, split_email
from src.layer2.prompts import (
    BATCH_INSTRUCTION,
    NO_DISQUALIFIERS,
    SYSTEM_PROMPT,
    USER_PROMPT_TEMPLATE,
)

TRUNCATION_MARKER = "\n\n[... content truncated ...]"
CHUNK_CONCURRENCY = 3
EMAIL_TYPES = ("job_listing", "newsletter", "application_status", "other")


# ===== PYDANTIC SCHEMA VALIDATION =====

class CandidateModel(BaseModel):
    """One extracted opportunity as returned by the model."""
    company: str = Field(default="", description="Hiring organization")
    title: str = Field(default="", description="Role title as written")
    location: Optional[str] = Field(default=None, description="City / country")
    technologies: List[str] = Field(default_factory=list)
    source_url: Optional[str] = Field(default=None)
    matched: bool = Field(default=False)
    confidence: Optional[Any] = Field(default=None, description="0-1 (percentages tolerated)")
    reasoning: str = Field(default="")
    extracted_fields: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("company", "title", "reasoning", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else str(v).strip()

    @field_validator("technologies", mode="before")
    @classmethod
    def coerce_technologies(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [t.strip() for t in v.split(",") if t.strip()]
        return [str(t).strip() for t in v if str(t).strip()]

    @field_validator("extracted_fields", mode="before")
    @classmethod
    def coerce_fields(cls, v):
        return v if isinstance(v, dict) else {}


class EntitiesModel(BaseModel):
    companies: List[str] = Field(default_factory=list)
    technologies: List[str] = Field(default_factory=list)
    locations: List[str] = Field(default_factory=list)
    positions: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    urls: List[str] = Field(default_factory=list)


class ClassificationOutput(BaseModel):
    """Schema for the classifier response."""
    thinking: str = Field(default="", description="Chain-of-thought over every listing")
    is_opportunity_email: bool = Field(..., description="Does the email contain opportunities")
    email_type: str = Field(default="other")
    candidates: List[CandidateModel] = Field(default_factory=list)
    entities: EntitiesModel = Field(default_factory=EntitiesModel)
    summary: str = Field(default="")

    @field_validator("email_type", mode="before")
    @classmethod
    def known_email_type(cls, v):
        v = str(v or "other").strip().lower()
        return v if v in EMAIL_TYPES else "other"

    @field_validator("candidates", mode="before")
    @classmethod
    def drop_empty_candidates(cls, v):
        if not v:
            return []
        return [c for c in v if isinstance(c, dict) and (c.get("company") or c.get("title"))]


# ===== CLASSIFIER =====

class MatchClassifier:
    """
    Extracts candidates from a normalized email and rates them against the
    caller's criteria.
    """

    def __init__(
        self,
        llm: Any,
        config: PipelineConfig,
        max_chars: Optional[int] = None,
        max_urls: Optional[int] = None,
        chunked: Optional[bool] = None,
        chunk_threshold: Optional[int] = None,
    ):
        self.llm = llm
        self.config = config
        self.max_chars = max_chars or Config.CLASSIFIER_MAX_CHARS
        self.max_urls = max_urls or Config.CLASSIFIER_MAX_URLS
        self.chunked = Config.ENABLE_CHUNKED_CLASSIFICATION if chunked is None else chunked
        self.chunk_threshold = chunk_threshold or Config.CHUNKED_THRESHOLD_CHARS
        self.logger = logging.getLogger(__name__)

    # ----- prompt building -----

    def _system_prompt(self, batch_instruction: str = "") -> str:
        disqualifiers = "\n".join(f"- {d}" for d in self.config.hard_disqualifiers) or NO_DISQUALIFIERS
        return SYSTEM_PROMPT.format(
            batch_instruction=batch_instruction,
            hard_disqualifiers=disqualifiers,
            match_criteria=self.config.match_criteria or "Not specified",
            extraction_fields=self.config.extraction_fields or "Not specified",
            user_intent=self.config.user_intent or "Find relevant job opportunities",
        )

    def _user_prompt(self, normalized: NormalizedEmail, content: str) -> str:
        urls = normalized["urls"][: self.max_urls]
        return USER_PROMPT_TEMPLATE.format(
            subject=normalized["subject"] or "(no subject)",
            sender=normalized["sender"] or "(unknown sender)",
            date=normalized["date"] or "(unknown date)",
            content=truncate_with_marker(content, self.max_chars, TRUNCATION_MARKER),
            url_count=len(urls),
            urls="\n".join(urls) if urls else "(none)",
        )

    # ----- LLM calls -----

    def _classify_text(self, normalized: NormalizedEmail, content: str, batch_instruction: str = "") -> ClassificationOutput:
        return invoke_structured(
            self.llm,
            self._system_prompt(batch_instruction),
            self._user_prompt(normalized, content),
            ClassificationOutput,
            layer="layer2",
        )

    async def _classify_chunks_async(self, normalized: NormalizedEmail, chunks: List[str]) -> List[Optional[ClassificationOutput]]:
        results: List[Optional[ClassificationOutput]] = []
        for start in range(0, len(chunks), CHUNK_CONCURRENCY):
            batch = chunks[start:start + CHUNK_CONCURRENCY]
            tasks = [
                asyncio.to_thread(
                    self._classify_text,
                    normalized,
                    chunk,
                    BATCH_INSTRUCTION.format(chunk_number=start + i + 1, chunk_count=len(chunks)),
                )
                for i, chunk in enumerate(batch)
            ]
            for offset, outcome in enumerate(await asyncio.gather(*tasks, return_exceptions=True)):
                if isinstance(outcome, BaseException):
                    self.logger.warning(f"Chunk {start + offset + 1}/{len(chunks)} failed: {outcome}")
                    results.append(None)
                else:
                    results.append(outcome)
        return results

    def _classify_chunked(self, normalized: NormalizedEmail) -> ClassificationOutput:
        split = split_email(normalized["plain_text"], normalized["sender"])
        self.logger.info(
            f"Chunked classification: {split.total_characters} chars -> {split.chunk_count} chunks "
            f"(source={split.source})"
        )
        outputs = [o for o in run_async(self._classify_chunks_async(normalized, [c.content for c in split.chunks])) if o]
        if not outputs:
            raise StageFailure("All classification chunks failed", layer="layer2")
        return merge_outputs(outputs)

    # ----- public API -----

    def classify(self, normalized: NormalizedEmail) -> Dict[str, Any]:
        """
        Classify one normalized email.

        Returns:
            Dict with email_type, is_opportunity_email, candidates, entities, summary

        Raises:
            StageFailure: If the model output cannot be parsed
        """
        if self.chunked and should_split(normalized["plain_text"], self.chunk_threshold):
            output = self._classify_chunked(normalized)
        else:
            output = self._classify_text(normalized, normalized["plain_text"])

        candidates = to_candidates(output.candidates, normalized["email_id"])
        return {
            "email_type": output.email_type,
            "is_opportunity_email": output.is_opportunity_email,
            "candidates": candidates,
            "entities": ExtractedEntities(**output.entities.model_dump()),
            "classifier_summary": output.summary,
        }


# ===== CONVERSION & MERGING =====

def to_candidates(models: List[CandidateModel], email_id: str) -> List[Candidate]:
    """Convert model output into Candidates with deterministic ids and sane confidence."""
    candidates: List[Candidate] = []
    for index, model in enumerate(models):
        base: Candidate = {
            "id": make_candidate_id(email_id, index),
            "company": model.company,
            "title": model.title,
            "location": model.location or None,
            "technologies": list(dict.fromkeys(model.technologies)),
            "source_url": model.source_url or None,
            "matched": False,
            "confidence": 0.0,
            "reasoning": "",
            "extracted_fields": dict(model.extracted_fields),
        }
        reasoning = model.reasoning
        if not model.matched and not reasoning:
            reasoning = "REJECTED: classifier gave no reason"
        candidates.append(apply_match_decision(
            base,
            matched=model.matched,
            confidence=normalize_confidence(model.confidence, model.matched),
            reasoning=reasoning,
        ))
    return candidates


def _candidate_key(model: CandidateModel) -> Tuple[str, str]:
    return (model.company.strip().lower(), model.title.strip().lower())


def merge_outputs(outputs: List[ClassificationOutput]) -> ClassificationOutput:
    """
    Merge chunk outputs: first occurrence of company|title wins, entity
    lists are unioned in order, email type comes from the first chunk.
    """
    seen = set()
    candidates: List[CandidateModel] = []
    for output in outputs:
        for candidate in output.candidates:
            key = _candidate_key(candidate)
            if key in seen:
                continue
            seen.add(key)
            candidates.append(candidate)

    entities: Dict[str, List[str]] = {name: [] for name in EntitiesModel.model_fields}
    for output in outputs:
        for name in entities:
            entities[name].extend(getattr(output.entities, name))
    entities = {name: list(dict.fromkeys(values)) for name, values in entities.items()}

    return ClassificationOutput(
        thinking="\n\n".join(o.thinking for o in outputs if o.thinking),
        is_opportunity_email=any(o.is_opportunity_email for o in outputs),
        email_type=outputs[0].email_type,
        candidates=[c.model_dump() for c in candidates],
        entities=EntitiesModel(**entities),
        summary=" ".join(o.summary for o in outputs if o.summary),
    )


# ===== LANGGRAPH NODE FUNCTION =====

def match_classifier_node(
    state: WorkflowState,
    llm: Any,
    events: Optional[StructuredLogger] = None,
) -> Dict[str, Any]:
    """
    LangGraph node function for Layer 2: Extraction & Match Classifier.

    Raises:
        StageFailure: Missing normalized email or unparsable model output
            (converted into an error delta by the workflow's stage guard)
    """
    log = get_logger(__name__, run_id=state.get("run_id"), layer="layer2")

    normalized = state.get("normalized")
    if not normalized:
        raise StageFailure("Email must be normalized before classification", layer="layer2")

    config = PipelineConfig.from_dict(state.get("config"))
    classifier = MatchClassifier(llm, config)

    if events is None:
        updates = classifier.classify(normalized)
    else:
        with LayerContext(events, 2) as ctx:
            updates = classifier.classify(normalized)
            ctx.add_metadata("candidates", len(updates["candidates"]))
            ctx.add_metadata("matched", sum(1 for c in updates["candidates"] if c["matched"]))

    matched = [c for c in updates["candidates"] if c["matched"]]
    log.info(
        f"Email type: {updates['email_type']}, candidates: {len(updates['candidates'])}, "
        f"matched: {len(matched)}"
    )
    for candidate in updates["candidates"]:
        status = "✓" if candidate["matched"] else "✗"
        log.info(
            f"  {status} {candidate['title']} at {candidate['company']} "
            f"({candidate['confidence']:.0%}) - {candidate['reasoning'][:100]}"
        )

    updates["phase"] = "classifying"
    return updates
