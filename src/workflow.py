"""
LangGraph Workflow: Email Opportunity Pipeline

Orchestrates the five layers for one inbound email:

    normalize -> classify -> (no matches) -> finish
    normalize -> classify -> research -> verify -> aggregate

Any stage that raises is converted into an appended error and the "error"
phase; the graph then routes straight to END with whatever candidates exist.
"""

import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Tuple, Union

from langgraph.graph import StateGraph, END

from src.common.config import Config
from src.common.llm_factory import TokenUsageCallback, create_cheap_llm, create_llm
from src.common.logger import setup_logging, get_logger
from src.common.error_handling import guarded_stage
from src.common.pipeline_config import PipelineConfig
from src.common.state import EmailInput, WorkflowRun, WorkflowState
from src.common.structured_logger import StructuredLogger, get_structured_logger
from src.common.utils import derive_email_id

# Initialize logging
setup_logging(level=Config.LOG_LEVEL, format=Config.LOG_FORMAT)

logger = get_logger(__name__)

# Import all layer node functions
from src.layer1.content_normalizer import content_normalizer_node
from src.layer2.match_classifier import match_classifier_node
from src.layer3.evidence_researcher import evidence_researcher_node
from src.layer3.web_tools import FirecrawlWebClient, WebResearchClient
from src.layer4.match_verifier import match_verifier_node
from src.layer5.aggregator import NO_MATCHES_SUMMARY, aggregator_node


@dataclass
class PipelineDependencies:
    """
    External collaborators for one run.

    Built fresh per run (from_config) or injected by the caller; nothing is
    shared through module-level state.
    """
    llm: Any                                # Classification
    web_client: WebResearchClient
    verification_llm: Optional[Any] = None  # Defaults to llm
    research_llm: Optional[Any] = None      # Optional research planner
    events: Optional[StructuredLogger] = None
    usage: Optional[TokenUsageCallback] = None

    @classmethod
    def from_config(cls, events: Optional[StructuredLogger] = None) -> "PipelineDependencies":
        """Production dependencies: ChatOpenAI models and FireCrawl."""
        Config.validate()
        logger.debug(Config.summary())
        usage = TokenUsageCallback()
        research_llm = None
        if Config.ENABLE_LLM_RESEARCH_PLANNER:
            research_llm = create_cheap_llm(layer="layer3", usage=usage, json_mode=False)
        return cls(
            llm=create_llm(layer="layer2", usage=usage),
            verification_llm=create_llm(
                layer="layer4",
                usage=usage,
                temperature=Config.VERIFICATION_TEMPERATURE,
            ),
            research_llm=research_llm,
            web_client=FirecrawlWebClient(),
            events=events,
            usage=usage,
        )


# ===== ROUTING =====

def route_after_stage(state: WorkflowState) -> str:
    return "end" if state.get("phase") == "error" else "continue"


def route_after_classification(state: WorkflowState) -> str:
    """Research iff at least one candidate matched."""
    if state.get("phase") == "error":
        return "end"
    if any(c["matched"] for c in state.get("candidates") or []):
        return "research"
    return "finish"


def no_match_node(state: WorkflowState, events: Optional[StructuredLogger] = None) -> Dict[str, Any]:
    """Terminal node for emails without a matched candidate."""
    log = get_logger(__name__, run_id=state.get("run_id"))
    log.info("No matched candidates - skipping research and verification")
    if events is not None:
        for layer in (3, 4, 5):
            events.layer_skip(layer, "no matched candidates")
    return {
        "research_results": [],
        "verifications": [],
        "has_matches": False,
        "summary": NO_MATCHES_SUMMARY,
        "phase": "complete",
    }


def create_workflow(deps: PipelineDependencies):
    """
    Create the LangGraph workflow connecting all layers.

    Flow:
    1. Layer 1: Content Normalizer (markup -> text + opportunity URLs)
    2. Layer 2: Match Classifier (one LLM call: candidates + match decisions)
       - No matched candidate -> finish (empty research, has_matches=False)
    3. Layer 3: Evidence Researcher (bounded ReAct agent per matched candidate)
    4. Layer 4: Match Verifier (re-check decisions against full evidence)
    5. Layer 5: Aggregator (merge evidence, summary, has_matches)

    Args:
        deps: Per-run LLMs, web client and event logger

    Returns:
        Compiled StateGraph ready to execute
    """
    events = deps.events

    @guarded_stage("normalization", layer="layer1")
    def normalize(state: WorkflowState) -> Dict[str, Any]:
        return content_normalizer_node(state, events)

    @guarded_stage("classification", layer="layer2")
    def classify(state: WorkflowState) -> Dict[str, Any]:
        return match_classifier_node(state, deps.llm, events)

    @guarded_stage("research", layer="layer3")
    def research(state: WorkflowState) -> Dict[str, Any]:
        return evidence_researcher_node(state, deps.web_client, deps.research_llm, events)

    @guarded_stage("verification", layer="layer4")
    def verify(state: WorkflowState) -> Dict[str, Any]:
        return match_verifier_node(state, deps.verification_llm or deps.llm, events)

    @guarded_stage("aggregation", layer="layer5")
    def aggregate(state: WorkflowState) -> Dict[str, Any]:
        return aggregator_node(state, events)

    def finish(state: WorkflowState) -> Dict[str, Any]:
        return no_match_node(state, events)

    workflow = StateGraph(WorkflowState)

    workflow.add_node("normalize", normalize)
    workflow.add_node("classify", classify)
    workflow.add_node("research", research)
    workflow.add_node("verify", verify)
    workflow.add_node("aggregate", aggregate)
    workflow.add_node("finish", finish)

    workflow.set_entry_point("normalize")
    workflow.add_conditional_edges("normalize", route_after_stage, {"continue": "classify", "end": END})
    workflow.add_conditional_edges(
        "classify",
        route_after_classification,
        {"research": "research", "finish": "finish", "end": END},
    )
    workflow.add_conditional_edges("research", route_after_stage, {"continue": "verify", "end": END})
    workflow.add_conditional_edges("verify", route_after_stage, {"continue": "aggregate", "end": END})
    workflow.add_edge("aggregate", END)
    workflow.add_edge("finish", END)

    return workflow.compile()


# ===== ENTRY POINTS =====

def _initial_state(run_id: str, email: EmailInput, config: PipelineConfig) -> WorkflowState:
    return {
        "run_id": run_id,
        "email": email,
        "config": config.to_dict(),
        "normalized": None,
        "email_type": None,
        "is_opportunity_email": False,
        "candidates": [],
        "entities": None,
        "classifier_summary": "",
        "research_results": [],
        "verifications": [],
        "has_matches": False,
        "summary": "",
        "phase": "init",
        "errors": [],
        "success": False,
        "processing_time_ms": 0,
    }


def _finalize(state: WorkflowState, started: float) -> WorkflowRun:
    run: WorkflowRun = dict(state)  # type: ignore[assignment]
    run.setdefault("errors", [])
    run.setdefault("phase", "error")
    run["has_matches"] = any(c["matched"] for c in run.get("candidates") or []) and run.get("phase") == "complete"
    run["success"] = run.get("phase") == "complete"
    run["processing_time_ms"] = int((time.time() - started) * 1000)
    return run


def _failed_run(run_id: str, email: Any, config: Any, error: Exception, started: float) -> WorkflowRun:
    return {
        "run_id": run_id,
        "email": email,
        "config": config.to_dict() if isinstance(config, PipelineConfig) else (config if isinstance(config, dict) else {}),
        "candidates": [],
        "research_results": [],
        "verifications": [],
        "has_matches": False,
        "summary": "",
        "phase": "error",
        "errors": [f"[pipeline] run: {error}"],
        "success": False,
        "processing_time_ms": int((time.time() - started) * 1000),
    }


def _prepare(
    email: EmailInput,
    config: Union[PipelineConfig, Dict[str, Any], None],
    deps: Optional[PipelineDependencies],
    run_id: str,
) -> Tuple[PipelineConfig, PipelineDependencies, StructuredLogger]:
    pipeline_config = config if isinstance(config, PipelineConfig) else PipelineConfig.from_dict(config)
    events = (deps.events if deps else None) or get_structured_logger(derive_email_id(email), run_id=run_id)
    if deps is None:
        deps = PipelineDependencies.from_config(events=events)
    elif deps.events is None:
        deps = replace(deps, events=events)
    return pipeline_config, deps, events


def _log_start(run_logger, email: EmailInput, pipeline_config: PipelineConfig, run_id: str) -> None:
    run_logger.info("=" * 70)
    run_logger.info("STARTING EMAIL OPPORTUNITY PIPELINE")
    run_logger.info("=" * 70)
    run_logger.info(f"Subject: {email.get('subject', '')}")
    run_logger.info(f"From: {email.get('sender', '')}")
    run_logger.info(f"Config: {pipeline_config.id}")
    run_logger.info(f"Run ID: {run_id}")
    run_logger.info(f"Started: {datetime.now(timezone.utc).isoformat()}")
    run_logger.info("=" * 70)


def _log_complete(run_logger, events: StructuredLogger, run: WorkflowRun, deps: PipelineDependencies) -> None:
    if run["errors"]:
        run_logger.warning(f"Pipeline finished in phase '{run['phase']}' with errors: {run['errors']}")
    else:
        run_logger.info(f"Pipeline completed successfully in {run['processing_time_ms']}ms")

    metadata: Dict[str, Any] = {
        "candidates": len(run.get("candidates") or []),
        "has_matches": run["has_matches"],
        "errors_count": len(run["errors"]),
    }
    if deps.usage is not None:
        metadata["total_tokens"] = deps.usage.total_tokens()
    events.pipeline_complete(status=run["phase"], duration_ms=run["processing_time_ms"], metadata=metadata)


def run_pipeline(
    email: EmailInput,
    config: Union[PipelineConfig, Dict[str, Any], None] = None,
    deps: Optional[PipelineDependencies] = None,
) -> WorkflowRun:
    """
    Run the complete pipeline for one email.

    Never raises: any failure, including dependency construction, ends up in
    the returned run's errors with phase "error".

    Args:
        email: Raw email (subject, sender, recipients, date, html_body, ...)
        config: PipelineConfig or its dict form (match criteria, domains, policy)
        deps: Injected LLMs / web client; built from Config when omitted

    Returns:
        Final WorkflowRun
    """
    run_id = str(uuid.uuid4())
    started = time.time()
    run_logger = get_logger(__name__, run_id=run_id)

    try:
        pipeline_config, deps, events = _prepare(email, config, deps, run_id)
        _log_start(run_logger, email, pipeline_config, run_id)
        events.pipeline_start(metadata={"subject": email.get("subject"), "config_id": pipeline_config.id})

        app = create_workflow(deps)
        run_logger.info("Executing LangGraph workflow")
        final_state = app.invoke(_initial_state(run_id, email, pipeline_config))
    except Exception as e:
        run_logger.exception(f"Pipeline failed with exception: {e}")
        return _failed_run(run_id, email, config, e, started)

    run = _finalize(final_state, started)
    _log_complete(run_logger, events, run, deps)
    return run


def stream_pipeline(
    email: EmailInput,
    config: Union[PipelineConfig, Dict[str, Any], None] = None,
    deps: Optional[PipelineDependencies] = None,
) -> Iterator[Tuple[str, Dict[str, Any]]]:
    """
    Run the pipeline, yielding (stage_name, state_delta) after every stage.

    The last item is always ("complete", WorkflowRun).
    """
    run_id = str(uuid.uuid4())
    started = time.time()
    run_logger = get_logger(__name__, run_id=run_id)

    try:
        pipeline_config, deps, events = _prepare(email, config, deps, run_id)
        _log_start(run_logger, email, pipeline_config, run_id)
        events.pipeline_start(metadata={"subject": email.get("subject"), "config_id": pipeline_config.id})
        app = create_workflow(deps)
    except Exception as e:
        run_logger.exception(f"Pipeline failed with exception: {e}")
        yield "complete", _failed_run(run_id, email, config, e, started)
        return

    final_state: Optional[WorkflowState] = None
    try:
        for mode, chunk in app.stream(
            _initial_state(run_id, email, pipeline_config),
            stream_mode=["updates", "values"],
        ):
            if mode == "values":
                final_state = chunk
                continue
            for stage, delta in chunk.items():
                yield stage, delta
    except Exception as e:
        run_logger.exception(f"Pipeline stream failed with exception: {e}")
        yield "complete", _failed_run(run_id, email, config, e, started)
        return

    run = _finalize(final_state or {}, started)
    _log_complete(run_logger, events, run, deps)
    yield "complete", run
