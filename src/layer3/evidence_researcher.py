"""
Layer 3: Evidence Researcher

Runs one ResearchAgent task per matched candidate, in batches of at most
max_concurrent (default 3). Each batch is awaited before the next starts.

A task that raises never affects its siblings: its slot receives a
found=False record with the error in its reasoning.
"""

import asyncio
from typing import Any, Dict, List, Optional

from src.common.logger import get_logger
from src.common.pipeline_config import PipelineConfig
from src.common.state import Candidate, EvidenceRecord, WorkflowState
from src.common.structured_logger import LayerContext, StructuredLogger
from src.common.utils import run_async
from src.layer3.research_agent import ResearchAgent, failed_research_record
from src.layer3.web_tools import WebResearchClient


async def _research_batch(agent: ResearchAgent, batch: List[Candidate]) -> List[Any]:
    tasks = [asyncio.to_thread(agent.research, candidate) for candidate in batch]
    return await asyncio.gather(*tasks, return_exceptions=True)


async def research_candidates_async(
    agent: ResearchAgent,
    candidates: List[Candidate],
    max_concurrent: int,
    events: Optional[StructuredLogger] = None,
) -> List[EvidenceRecord]:
    """
    Research candidates in bounded batches.

    Returns:
        One EvidenceRecord per candidate, in input order
    """
    logger = get_logger(__name__, layer="layer3")
    records: List[EvidenceRecord] = []
    batch_size = max(1, max_concurrent)

    for start in range(0, len(candidates), batch_size):
        batch = candidates[start:start + batch_size]
        logger.info(f"Researching batch {start // batch_size + 1}: {len(batch)} candidate(s)")
        results = await _research_batch(agent, batch)

        for candidate, result in zip(batch, results):
            if isinstance(result, Exception):
                logger.error(f"Research task for {candidate['id']} failed: {result}")
                record = failed_research_record(candidate, str(result))
            else:
                record = result
            if events is not None:
                events.research_progress(
                    candidate["id"], record["found"], record["iterations"], record["stop_reason"]
                )
            records.append(record)

    return records


def research_candidates(
    agent: ResearchAgent,
    candidates: List[Candidate],
    max_concurrent: int,
    events: Optional[StructuredLogger] = None,
) -> List[EvidenceRecord]:
    """Sync wrapper around research_candidates_async."""
    if not candidates:
        return []
    return run_async(research_candidates_async(agent, candidates, max_concurrent, events))


def evidence_researcher_node(
    state: WorkflowState,
    web_client: WebResearchClient,
    planner_llm: Optional[Any] = None,
    events: Optional[StructuredLogger] = None,
) -> Dict[str, Any]:
    """
    LangGraph node function for Layer 3: Evidence Research.

    Only matched candidates are researched.
    """
    log = get_logger(__name__, run_id=state.get("run_id"), layer="layer3")
    config = PipelineConfig.from_dict(state.get("config"))
    matched = [c for c in state.get("candidates") or [] if c["matched"]]

    agent = ResearchAgent(web_client, config, planner_llm=planner_llm)
    log.info(
        f"Researching {len(matched)} matched candidate(s) "
        f"(max {config.max_iterations} tool calls each, {config.max_concurrent} at a time)"
    )

    if events is None:
        records = research_candidates(agent, matched, config.max_concurrent)
    else:
        with LayerContext(events, 3) as ctx:
            records = research_candidates(agent, matched, config.max_concurrent, events)
            ctx.add_metadata("researched", len(records))
            ctx.add_metadata("found", sum(1 for r in records if r["found"]))

    found = sum(1 for r in records if r["found"])
    log.info(f"Research complete: {found}/{len(records)} public listings found")

    return {
        "research_results": records,
        "phase": "researching",
    }
