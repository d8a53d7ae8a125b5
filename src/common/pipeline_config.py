"""
Caller-supplied pipeline configuration.

Everything here belongs to the caller (one user's search agent) and is passed
per run: free-text match criteria and extraction fields, which are forwarded
verbatim into prompts, plus domain lists, synonyms and the verification policy.

Usage:
    config = PipelineConfig.from_dict({
        "match_criteria": "Software development roles, max 5 years experience",
        "hard_disqualifiers": ["PLC / SCADA programming"],
        "verification": {"experience_ceiling_years": 5, "borderline_min_years": 3},
    })
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

from src.common.config import Config


# Job boards worth preferring when the company's own site has nothing
DEFAULT_PREFERRED_DOMAINS: List[str] = [
    "jobindex.dk",
    "karriere.dk",
    "it-jobbank.dk",
    "ofir.dk",
    "jobnet.dk",
]

# Require login or block scraping
DEFAULT_DENY_DOMAINS: List[str] = [
    "linkedin.com",
    "facebook.com",
    "twitter.com",
    "x.com",
    "instagram.com",
]


@dataclass
class VerificationPolicy:
    """
    Experience thresholds applied after the verification LLM call.

    All thresholds are optional; with no ceiling configured the verifier
    keeps the model's own decision on experience.
    """
    experience_ceiling_years: Optional[float] = None      # Above this: hard reject
    borderline_min_years: Optional[float] = None          # [min, ceiling]: flagged
    borderline_confidence_range: Tuple[float, float] = (0.5, 0.6)
    unverified_discount: float = 0.9    # Multiplier when no evidence was found

    def __post_init__(self):
        low, high = self.borderline_confidence_range
        if not 0 <= low <= high <= 1:
            raise ValueError(f"Invalid borderline_confidence_range: {self.borderline_confidence_range}")
        if not 0 < self.unverified_discount <= 1:
            raise ValueError("unverified_discount must be in (0, 1]")
        if (
            self.borderline_min_years is not None
            and self.experience_ceiling_years is not None
            and self.borderline_min_years > self.experience_ceiling_years
        ):
            raise ValueError("borderline_min_years cannot exceed experience_ceiling_years")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "VerificationPolicy":
        data = dict(data or {})
        if "borderline_confidence_range" in data:
            data["borderline_confidence_range"] = tuple(data["borderline_confidence_range"])
        return cls(**data)


@dataclass
class PipelineConfig:
    """Configuration for one search agent (one user's criteria)."""

    id: str = "default"
    match_criteria: str = ""
    extraction_fields: str = ""
    user_intent: Optional[str] = None
    hard_disqualifiers: List[str] = field(default_factory=list)

    # Domain lists
    preferred_domains: List[str] = field(default_factory=lambda: DEFAULT_PREFERRED_DOMAINS.copy())
    deny_domains: List[str] = field(default_factory=lambda: DEFAULT_DENY_DOMAINS.copy())

    # Extra localized title equivalents: {"udvikler": ["developer"]}
    title_synonyms: Dict[str, List[str]] = field(default_factory=dict)

    # Research budget
    max_iterations: int = field(default_factory=lambda: Config.RESEARCH_MAX_ITERATIONS)
    max_concurrent: int = field(default_factory=lambda: Config.RESEARCH_MAX_CONCURRENT)
    max_context_chars: int = field(default_factory=lambda: Config.RESEARCH_MAX_CONTEXT_CHARS)

    verification: VerificationPolicy = field(default_factory=VerificationPolicy)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PipelineConfig":
        """
        Build from a plain dict (API payload or WorkflowState["config"]).

        Unknown keys are ignored so callers can keep UI-only settings in the
        same document.
        """
        data = dict(data or {})
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in data.items() if k in known and v is not None}
        if "verification" in kwargs and not isinstance(kwargs["verification"], VerificationPolicy):
            kwargs["verification"] = VerificationPolicy.from_dict(kwargs["verification"])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["verification"]["borderline_confidence_range"] = list(
            self.verification.borderline_confidence_range
        )
        return data
