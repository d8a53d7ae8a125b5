"""
Unit Tests for Layer 4: Match Verifier

Tests:
- Unverified candidates: decision kept, confidence discounted, no LLM call
- Experience policy: ceiling rejection and borderline clamping
- Decision flips carry a changed_reason
- Field merging keeps classifier fields
- Verification failures are non-fatal
"""

import pytest

from src.common.pipeline_config import PipelineConfig, VerificationPolicy
from src.layer4.match_verifier import (
    UNVERIFIED_NOTE,
    MatchVerifier,
    VerificationOutput,
    apply_experience_policy,
    match_verifier_node,
    merge_fields,
)
from tests.fixtures.sample_emails import ACME_CAREERS_URL, ACME_POSTING, ACME_VERIFICATION
from tests.helpers.fakes import llm_always, llm_returning


@pytest.fixture
def config(pipeline_config):
    return PipelineConfig.from_dict(pipeline_config)


@pytest.fixture
def found_record(backend_candidate):
    return {
        "candidate_id": backend_candidate["id"],
        "company": backend_candidate["company"],
        "title": backend_candidate["title"],
        "found": True,
        "primary_source": {
            "url": ACME_CAREERS_URL,
            "title": "Backend Developer - Acme A/S",
            "content": ACME_POSTING[:500],
            "score": 1.0,
            "is_primary": True,
            "source_type": "career_page",
        },
        "sources": [],
        "evidence_text": ACME_POSTING,
        "requirements": [],
        "technologies": ["Python"],
        "deadline": "1 March 2025",
        "iterations": 2,
        "reasoning": "trace",
        "stop_reason": "validated",
        "validation": None,
    }


@pytest.fixture
def missing_record(found_record):
    record = dict(found_record)
    record.update({"found": False, "primary_source": None, "evidence_text": "", "stop_reason": "iteration_budget"})
    return record


def _verification(**overrides):
    payload = dict(ACME_VERIFICATION)
    payload["extracted_fields"] = dict(ACME_VERIFICATION["extracted_fields"])
    payload.update(overrides)
    return payload


# ===== POLICY =====

class TestExperiencePolicy:

    @pytest.fixture
    def policy(self):
        return VerificationPolicy(experience_ceiling_years=5, borderline_min_years=3)

    def test_above_ceiling_is_rejected(self, policy):
        matched, conf, reasoning, reason, borderline = apply_experience_policy(True, 0.9, "Good fit", 7, policy)

        assert matched is False
        assert reason == "Requires 7+ years of experience (ceiling is 5)"
        assert reason in reasoning
        assert borderline is False

    def test_borderline_clamps_confidence(self, policy):
        matched, conf, _, reason, borderline = apply_experience_policy(True, 0.9, "Good fit", 4, policy)

        assert matched is True
        assert conf == 0.6
        assert reason is None
        assert borderline is True

    def test_borderline_raises_low_confidence(self, policy):
        _, conf, _, _, _ = apply_experience_policy(True, 0.2, "", 3, policy)
        assert conf == 0.5

    def test_below_floor_untouched(self, policy):
        assert apply_experience_policy(True, 0.9, "r", 2, policy) == (True, 0.9, "r", None, False)

    def test_no_thresholds_means_no_enforcement(self):
        assert apply_experience_policy(True, 0.9, "r", 12, VerificationPolicy()) == (True, 0.9, "r", None, False)

    def test_rejections_are_left_alone(self, policy):
        assert apply_experience_policy(False, 0.9, "r", 12, policy)[0] is False

    def test_invalid_range_rejected(self):
        with pytest.raises(ValueError):
            VerificationPolicy(borderline_confidence_range=(0.8, 0.2))


class TestVerificationOutput:

    @pytest.mark.parametrize("raw,expected", [(3, 3), ("3+ years", 3.0), ("3-5 years", 3.0), ("none", None)])
    def test_required_years_parsing(self, raw, expected):
        output = VerificationOutput.model_validate({"still_matches": True, "required_years": raw})
        assert output.required_years == expected

    def test_still_matches_is_required(self):
        with pytest.raises(Exception):  # Pydantic ValidationError
            VerificationOutput.model_validate({"confidence": 0.5})


def test_merge_fields_keeps_old_keys():
    merged = merge_fields({"work_type": "onsite", "team": "platform"}, {"work_type": "", "deadline": "1 March"})

    assert merged == {"work_type": "onsite", "team": "platform", "deadline": "1 March", "_reverified": True}


# ===== VERIFIER =====

class TestMatchVerifier:

    def test_unverified_candidate_is_discounted_without_llm_call(self, config, backend_candidate, missing_record):
        llm = llm_always(ACME_VERIFICATION)
        updated, result = MatchVerifier(llm, config).verify(backend_candidate, missing_record)

        llm.invoke.assert_not_called()
        assert updated["matched"] is True
        assert updated["confidence"] == pytest.approx(0.72)
        assert updated["reasoning"].endswith(UNVERIFIED_NOTE)
        assert result["verified"] is False
        assert result["changed_reason"] is None

    def test_confirmed_match(self, config, backend_candidate, found_record):
        llm = llm_returning(ACME_VERIFICATION)
        updated, result = MatchVerifier(llm, config).verify(backend_candidate, found_record)

        assert updated["matched"] is True
        assert updated["confidence"] == pytest.approx(0.85)
        assert result["verified"] is True
        assert result["changed_reason"] is None
        assert result["required_years"] == 2
        assert updated["extracted_fields"]["work_type"] == "onsite"
        assert updated["extracted_fields"]["_reverified"] is True
        assert "changed_reason" not in updated["extracted_fields"]

    def test_prompt_carries_criteria_and_evidence(self, config, backend_candidate, found_record):
        llm = llm_returning(ACME_VERIFICATION)
        MatchVerifier(llm, config).verify(backend_candidate, found_record)

        system, user = llm.invoke.call_args[0][0]
        assert config.match_criteria in system.content
        assert "PLC" in system.content
        assert ACME_CAREERS_URL in user.content
        assert "2+ years of professional Python experience" in user.content

    def test_experience_above_ceiling_flips_decision(self, config, backend_candidate, found_record):
        llm = llm_returning(_verification(required_years=7, reasoning="Senior role"))
        updated, result = MatchVerifier(llm, config).verify(backend_candidate, found_record)

        assert updated["matched"] is False
        assert result["changed_reason"] == "Requires 7+ years of experience (ceiling is 5)"
        assert updated["extracted_fields"]["changed_reason"] == result["changed_reason"]
        assert updated["reasoning"]

    def test_borderline_experience_is_flagged(self, config, backend_candidate, found_record):
        llm = llm_returning(_verification(required_years=4, confidence=0.9))
        updated, result = MatchVerifier(llm, config).verify(backend_candidate, found_record)

        assert updated["matched"] is True
        assert updated["confidence"] == pytest.approx(0.6)
        assert updated["extracted_fields"]["experience_borderline"] is True
        assert result["changed_reason"] is None

    def test_model_flip_keeps_its_reason(self, config, backend_candidate, found_record):
        llm = llm_returning(_verification(
            still_matches=False,
            confidence=0.8,
            reasoning="Posting is for PLC commissioning",
            changed_reason="Role is PLC programming, a hard disqualifier",
            required_years=None,
        ))
        updated, result = MatchVerifier(llm, config).verify(backend_candidate, found_record)

        assert updated["matched"] is False
        assert result["changed_reason"] == "Role is PLC programming, a hard disqualifier"

    def test_flip_without_reason_gets_fallback(self, config, backend_candidate, found_record):
        llm = llm_returning(_verification(still_matches=False, changed_reason=None, required_years=None))
        _, result = MatchVerifier(llm, config).verify(backend_candidate, found_record)
        assert result["changed_reason"] == "Full job description contradicts the original decision"

    def test_percentage_confidence(self, config, backend_candidate, found_record):
        llm = llm_returning(_verification(confidence=85, required_years=None))
        updated, _ = MatchVerifier(llm, config).verify(backend_candidate, found_record)
        assert updated["confidence"] == pytest.approx(0.85)


class TestMatchVerifierNode:

    def test_failed_verification_keeps_candidate(self, pipeline_config, backend_candidate, found_record):
        state = {
            "run_id": "run-1",
            "config": pipeline_config,
            "candidates": [backend_candidate],
            "research_results": [found_record],
        }
        updates = match_verifier_node(state, llm_always("I am not JSON"))

        assert updates["phase"] == "verifying"
        assert updates["candidates"] == [backend_candidate]
        assert updates["verifications"] == []
        assert len(updates["errors"]) == 1
        assert updates["errors"][0].startswith("[layer4] verification: msg-acme-1-cand-0")

    def test_unresearched_candidates_pass_through(self, pipeline_config, backend_candidate, missing_record):
        rejected = dict(backend_candidate, id="msg-acme-1-cand-1", matched=False, reasoning="REJECTED: PLC")
        state = {
            "config": pipeline_config,
            "candidates": [backend_candidate, rejected],
            "research_results": [missing_record],
        }
        updates = match_verifier_node(state, llm_always(ACME_VERIFICATION))

        assert updates["candidates"][1] == rejected
        assert [v["candidate_id"] for v in updates["verifications"]] == ["msg-acme-1-cand-0"]
        assert "errors" not in updates
