"""
End-to-end tests for src/workflow.py with injected fakes.

No network and no real model: the classifier and verifier are MagicMock chat
models, research runs against a FakeWebClient.
"""

from unittest.mock import MagicMock

import pytest

from src.common.config import Config
from src.common.structured_logger import StructuredLogger
from src.workflow import (
    PipelineDependencies,
    route_after_classification,
    run_pipeline,
    stream_pipeline,
)
from src.layer5.aggregator import NO_MATCHES_SUMMARY
from tests.fixtures.sample_emails import (
    ACME_CAREERS_URL,
    ACME_CLASSIFICATION,
    ACME_POSTING,
    ACME_VERIFICATION,
    NO_MATCH_CLASSIFICATION,
)
from tests.helpers.fakes import FakeWebClient, llm_always, llm_returning


def _deps(classification=ACME_CLASSIFICATION, verification=ACME_VERIFICATION, web_client=None, events=None):
    return PipelineDependencies(
        llm=llm_returning(classification) if isinstance(classification, dict) else llm_always(classification),
        verification_llm=llm_always(verification),
        web_client=web_client or FakeWebClient(
            pages={ACME_CAREERS_URL: ("Backend Developer - Acme A/S", ACME_POSTING)}
        ),
        events=events,
    )


class TestRouting:

    def test_routes_to_research_on_match(self):
        assert route_after_classification({"phase": "classifying", "candidates": [{"matched": True}]}) == "research"

    def test_routes_to_finish_without_match(self):
        assert route_after_classification({"phase": "classifying", "candidates": [{"matched": False}]}) == "finish"

    def test_routes_to_end_on_error(self):
        assert route_after_classification({"phase": "error", "candidates": [{"matched": True}]}) == "end"


class TestRunPipeline:

    def test_acme_alert_end_to_end(self, acme_email, pipeline_config):
        deps = _deps()
        run = run_pipeline(acme_email, pipeline_config, deps)

        assert run["phase"] == "complete"
        assert run["success"] is True
        assert run["errors"] == []
        assert run["has_matches"] is True

        backend, plc = run["candidates"]
        assert backend["matched"] is True
        assert backend["confidence"] == pytest.approx(0.85)
        assert backend["extracted_fields"]["research_source"] == ACME_CAREERS_URL
        assert plc["matched"] is False
        assert "hard disqualifier" in plc["reasoning"]
        assert "changed_reason" not in plc["extracted_fields"]

        assert len(run["research_results"]) == 1
        record = run["research_results"][0]
        assert record["candidate_id"] == backend["id"]
        assert record["found"] is True
        assert record["primary_source"]["url"] == ACME_CAREERS_URL

        assert [v["candidate_id"] for v in run["verifications"]] == [backend["id"]]
        assert "✓ Backend Developer at Acme A/S (Copenhagen)" in run["summary"]
        assert "PLC Programmer" not in run["summary"]

    def test_no_match_short_circuits_research(self, acme_email, pipeline_config):
        web_client = FakeWebClient()
        events = MagicMock()
        deps = _deps(classification=NO_MATCH_CLASSIFICATION, web_client=web_client, events=events)

        run = run_pipeline(acme_email, pipeline_config, deps)

        assert run["phase"] == "complete"
        assert run["has_matches"] is False
        assert run["research_results"] == []
        assert run["verifications"] == []
        assert run["summary"] == NO_MATCHES_SUMMARY
        assert web_client.call_count == 0
        deps.verification_llm.invoke.assert_not_called()
        assert events.layer_skip.call_count == 3

    def test_runs_are_independent_and_repeatable(self, acme_email, pipeline_config):
        first = run_pipeline(acme_email, pipeline_config, _deps())
        second = run_pipeline(acme_email, pipeline_config, _deps())

        def decisions(run):
            return [(c["id"], c["matched"], c["confidence"]) for c in run["candidates"]]

        assert decisions(first) == decisions(second)
        assert first["summary"] == second["summary"]
        assert first["run_id"] != second["run_id"]

    def test_classifier_failure_ends_in_error_phase(self, acme_email, pipeline_config):
        web_client = FakeWebClient()
        run = run_pipeline(acme_email, pipeline_config, _deps(classification="no json here", web_client=web_client))

        assert run["phase"] == "error"
        assert run["success"] is False
        assert run["has_matches"] is False
        assert len(run["errors"]) == 1
        assert run["errors"][0].startswith("[layer2] classification:")
        assert web_client.call_count == 0

    def test_verification_failure_is_not_fatal(self, acme_email, pipeline_config):
        run = run_pipeline(acme_email, pipeline_config, _deps(verification="not json"))

        assert run["phase"] == "complete"
        assert run["has_matches"] is True
        assert run["candidates"][0]["matched"] is True
        assert len(run["errors"]) == 1
        assert run["errors"][0].startswith("[layer4] verification:")

    def test_invalid_config_is_returned_not_raised(self, acme_email):
        bad = {"verification": {"borderline_confidence_range": [0.9, 0.1]}}
        run = run_pipeline(acme_email, bad, _deps())

        assert run["phase"] == "error"
        assert run["has_matches"] is False
        assert run["errors"][0].startswith("[pipeline] run:")

    def test_shared_deps_keep_events_per_run(self, acme_email, pipeline_config, monkeypatch):
        emitted = []

        def recording_logger(email_id, run_id=None, enabled=None):
            return StructuredLogger(email_id, run_id=run_id, sink=emitted.append)

        monkeypatch.setattr("src.workflow.get_structured_logger", recording_logger)
        deps = PipelineDependencies(
            llm=llm_always(ACME_CLASSIFICATION),
            verification_llm=llm_always(ACME_VERIFICATION),
            web_client=FakeWebClient(pages={ACME_CAREERS_URL: ("Backend Developer - Acme A/S", ACME_POSTING)}),
        )

        first = run_pipeline(acme_email, pipeline_config, deps)
        second = run_pipeline(dict(acme_email, id="msg-other-2"), pipeline_config, deps)

        assert deps.events is None
        assert first["phase"] == second["phase"] == "complete"
        starts = [e for e in emitted if e.event == "pipeline_start"]
        assert [e.email_id for e in starts] == ["msg-acme-1", "msg-other-2"]
        assert {e.run_id for e in emitted if e.email_id == "msg-other-2"} == {second["run_id"]}

    def test_missing_credentials_fail_the_run(self, acme_email, pipeline_config, monkeypatch):
        monkeypatch.setattr(Config, "OPENAI_API_KEY", None)

        run = run_pipeline(acme_email, pipeline_config)

        assert run["phase"] == "error"
        assert run["success"] is False
        assert "Missing required configuration: OPENAI_API_KEY" in run["errors"][0]

    def test_email_is_not_mutated(self, acme_email, pipeline_config):
        before = dict(acme_email)
        run_pipeline(acme_email, pipeline_config, _deps())
        assert acme_email == before


class TestStreamPipeline:

    def test_yields_each_stage_then_complete(self, acme_email, pipeline_config):
        items = list(stream_pipeline(acme_email, pipeline_config, _deps()))
        stages = [stage for stage, _ in items]

        assert stages == ["normalize", "classify", "research", "verify", "aggregate", "complete"]
        assert items[1][1]["phase"] == "classifying"
        final = items[-1][1]
        assert final["phase"] == "complete"
        assert final["has_matches"] is True

    def test_no_match_stream(self, acme_email, pipeline_config):
        stages = [s for s, _ in stream_pipeline(acme_email, pipeline_config, _deps(NO_MATCH_CLASSIFICATION))]
        assert stages == ["normalize", "classify", "finish", "complete"]
