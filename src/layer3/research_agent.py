"""
Layer 3: Evidence Research Agent

Finds a public, authoritative posting for one matched candidate using a
bounded ReAct loop (Thought -> Action -> Observation -> repeat):

- Actions are web searches and page extractions, one at a time
- At most max_iterations tool invocations per candidate
- Strategy order: the posting's own URL, the organization's career pages,
  preferred job boards, then title-synonym variants
- Deny-listed (login-walled) domains are never searched or extracted
- A page is accepted only if the full validation checklist passes

Tool failures are observations, not exceptions. The loop always ends with an
EvidenceRecord (found=False plus a stop reason when nothing validated).

An optional LLM planner can choose each next action via tool calling; when
it proposes nothing usable the fixed strategy queue decides instead.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from src.common.config import Config
from src.common.logger import PipelineLogger, get_logger
from src.common.pipeline_config import PipelineConfig
from src.common.state import Candidate, EvidenceRecord, SearchTask, ValidationResult, WebSource
from src.common.utils import domain_matches, get_domain
from src.layer3.evidence_validator import company_name_variants, validate_evidence
from src.layer3.field_extractor import extract_structured_fields
from src.layer3.title_synonyms import synonym_terms
from src.layer3.web_tools import SearchHit, WebResearchClient, classify_source_type

MAX_EXTRACTS_PER_SEARCH = 3
SOURCE_PREVIEW_CHARS = 200
PRIMARY_PREVIEW_CHARS = 500


# ===== PLANNER TOOL SCHEMAS =====

class WebSearch(BaseModel):
    """Search the public web for pages about the job posting."""
    query: str = Field(..., description="Search query, e.g. 'Acme careers Backend Developer Copenhagen'")


class ExtractPage(BaseModel):
    """Retrieve the full text of one URL from the candidate list."""
    url: str = Field(..., description="Absolute URL to extract")


class FinishResearch(BaseModel):
    """Stop researching."""
    reason: str = Field(..., description="Why no further action is useful")


RESEARCH_SYSTEM_PROMPT = """You are a job research agent. Find the PUBLIC, original posting for one job.

Rules:
1. Prefer the organization's own career pages over job boards; job boards over anything else
2. Never use these domains (login required): {deny_domains}
3. Preferred job boards: {preferred_domains}
4. If direct searches fail, try localized synonyms of the title
5. A page only counts if it names the organization, the title (or a synonym) and the right country,
   and it must not be a generic job-description template

The user's criteria (context only): {match_criteria}

Call exactly ONE tool per turn: WebSearch, ExtractPage (only URLs from the candidate list), or FinishResearch."""

PLANNER_USER_TEMPLATE = """Job: {title} at {company} ({location})
Tool calls left: {remaining}

Trace so far:
{trace}

Candidate URLs not yet extracted:
{pending}

Choose the next action."""


@dataclass
class AgentAction:
    tool: str           # "search" | "extract" | "finish"
    argument: str = ""  # query or URL
    thought: str = ""
    task: Optional[SearchTask] = None


@dataclass
class _PendingUrl:
    url: str
    rank: float
    title: str = ""
    snippet: str = ""


@dataclass
class _ResearchRun:
    """Mutable state confined to one candidate's research task."""
    candidate: Candidate
    tasks: List[SearchTask]
    pending: List[_PendingUrl] = field(default_factory=list)
    visited: set = field(default_factory=set)
    searched: set = field(default_factory=set)
    sources: Dict[str, WebSource] = field(default_factory=dict)
    trace: List[str] = field(default_factory=list)
    iterations: int = 0
    context_chars: int = 0
    extracts_since_search: int = 0
    validated: Optional[Tuple[str, str, str, ValidationResult]] = None  # url, title, text, checklist
    last_validation: Optional[ValidationResult] = None


# ===== STRATEGY =====

def plan_search_tasks(candidate: Candidate, config: PipelineConfig) -> List[SearchTask]:
    """
    Build the prioritized query list for one candidate.

    Order: organization career page, quoted title + organization, preferred
    job boards, then one query per title synonym.
    """
    company = candidate["company"]
    title = candidate["title"]
    location = candidate.get("location") or ""
    deny = list(config.deny_domains)

    tasks: List[SearchTask] = [
        {
            "query": " ".join(p for p in [company, "careers", title, location] if p),
            "entity": company,
            "priority": 100,
            "kind": "company",
            "exclude_domains": deny,
        },
        {
            "query": f'"{title}" "{company}" job description',
            "entity": title,
            "priority": 90,
            "kind": "job",
            "exclude_domains": deny,
        },
    ]

    for i, domain in enumerate(config.preferred_domains[:2]):
        tasks.append({
            "query": f'"{title}" "{company}" site:{domain}',
            "entity": domain,
            "priority": 80 - i,
            "kind": "general",
            "exclude_domains": deny,
        })

    for i, variant in enumerate(synonym_terms(title, config.title_synonyms)):
        tasks.append({
            "query": " ".join(p for p in [company, variant, location] if p),
            "entity": variant,
            "priority": 70 - i,
            "kind": "synonym",
            "exclude_domains": deny,
        })

    tasks.sort(key=lambda t: t["priority"], reverse=True)
    return tasks


def rank_url(url: str, company: str, search_score: float = 0.0) -> float:
    """
    Preference score for extracting a URL.

    career page on the organization's domain > other career page >
    organization domain > job board > anything else; search score breaks ties.
    """
    source_type = classify_source_type(url)
    domain = get_domain(url).replace("-", "")
    on_org_domain = any(
        " " not in v and len(v) >= 3 and v in domain
        for v in company_name_variants(company)
    )
    base = {"career_page": 3.0, "company_page": 1.5, "job_board": 2.0, "other": 1.0}[source_type]
    if on_org_domain and source_type != "job_board":
        base += 2.0
    return base + min(max(search_score, 0.0), 1.0) * 0.5


# ===== AGENT =====

class ResearchAgent:
    """
    Bounded research loop for one candidate.

    Construct one per run; the agent keeps no state between research() calls.
    """

    def __init__(
        self,
        web_client: WebResearchClient,
        config: PipelineConfig,
        planner_llm: Optional[Any] = None,
        search_limit: Optional[int] = None,
        logger: Optional[PipelineLogger] = None,
    ):
        self.web_client = web_client
        self.config = config
        self.planner_llm = planner_llm.bind_tools([WebSearch, ExtractPage, FinishResearch]) if planner_llm else None
        self.search_limit = search_limit or Config.RESEARCH_SEARCH_LIMIT
        self.logger = logger or get_logger(__name__, layer="layer3")

    # ----- action selection -----

    def _strategy_action(self, run: _ResearchRun) -> AgentAction:
        """Next step from the fixed strategy queue."""
        extract_now = run.pending and (
            run.extracts_since_search < MAX_EXTRACTS_PER_SEARCH or not run.tasks
        )
        if extract_now:
            best = max(run.pending, key=lambda p: p.rank)
            return AgentAction(
                "extract",
                best.url,
                thought=f"Best unvisited URL ({classify_source_type(best.url)}, rank {best.rank:.2f})",
            )
        while run.tasks:
            task = run.tasks.pop(0)
            if task["query"].lower() in run.searched:
                continue
            return AgentAction(
                "search",
                task["query"],
                thought=f"Trying {task['kind']} strategy (priority {task['priority']})",
                task=task,
            )
        return AgentAction("finish", thought="All search strategies exhausted")

    def _planner_action(self, run: _ResearchRun) -> Optional[AgentAction]:
        """Ask the LLM planner for the next step; None when it gives nothing usable."""
        candidate = run.candidate
        prompt = PLANNER_USER_TEMPLATE.format(
            title=candidate["title"],
            company=candidate["company"],
            location=candidate.get("location") or "location not specified",
            remaining=self.config.max_iterations - run.iterations,
            trace="\n".join(run.trace[-12:]) or "(nothing yet)",
            pending="\n".join(f"- {p.url}" for p in sorted(run.pending, key=lambda p: -p.rank)[:8]) or "(none)",
        )
        system = RESEARCH_SYSTEM_PROMPT.format(
            deny_domains=", ".join(self.config.deny_domains) or "none",
            preferred_domains=", ".join(self.config.preferred_domains) or "none",
            match_criteria=self.config.match_criteria or "not specified",
        )
        try:
            response = self.planner_llm.invoke([SystemMessage(content=system), HumanMessage(content=prompt)])
        except Exception as e:
            run.trace.append(f"Thought: planner unavailable ({e}); using strategy queue")
            return None

        tool_calls = getattr(response, "tool_calls", None) or []
        if not tool_calls:
            return None
        call = tool_calls[0]
        name, args = call.get("name"), call.get("args") or {}
        thought = str(getattr(response, "content", "") or "")[:300]

        if name == "WebSearch" and str(args.get("query", "")).strip():
            query = str(args["query"]).strip()
            if query.lower() not in run.searched:
                return AgentAction("search", query, thought=thought or "Planner search")
        elif name == "ExtractPage" and str(args.get("url", "")).strip():
            url = str(args["url"]).strip()
            if url not in run.visited and not domain_matches(url, self.config.deny_domains):
                return AgentAction("extract", url, thought=thought or "Planner extract")
        # FinishResearch without validated evidence, or an unusable proposal
        return None

    def _next_action(self, run: _ResearchRun) -> AgentAction:
        if self.planner_llm is not None:
            action = self._planner_action(run)
            if action is not None:
                if action.tool == "extract":
                    run.pending = [p for p in run.pending if p.url != action.argument]
                return action
        action = self._strategy_action(run)
        if action.tool == "extract":
            run.pending = [p for p in run.pending if p.url != action.argument]
        return action

    # ----- tool execution -----

    def _record_source(self, run: _ResearchRun, url: str, title: str, content: str, score: float) -> None:
        if url in run.sources:
            return
        run.sources[url] = {
            "url": url,
            "title": title,
            "content": content[:SOURCE_PREVIEW_CHARS],
            "score": score,
            "is_primary": False,
            "source_type": classify_source_type(url),
        }

    def _add_pending(self, run: _ResearchRun, hit: SearchHit) -> None:
        if hit.url in run.visited or domain_matches(hit.url, self.config.deny_domains):
            return
        if any(p.url == hit.url for p in run.pending):
            return
        run.pending.append(_PendingUrl(
            url=hit.url,
            rank=rank_url(hit.url, run.candidate["company"], hit.score),
            title=hit.title,
            snippet=hit.snippet,
        ))

    def _do_search(self, run: _ResearchRun, query: str) -> None:
        run.searched.add(query.lower())
        run.extracts_since_search = 0
        outcome = self.web_client.search(query, exclude_domains=self.config.deny_domains, limit=self.search_limit)
        if not outcome.ok:
            run.trace.append(f"Observation: search failed ({outcome.error})")
            return
        for hit in outcome.hits:
            self._record_source(run, hit.url, hit.title, hit.snippet, hit.score)
            self._add_pending(run, hit)
        run.context_chars += sum(len(h.snippet) for h in outcome.hits)
        run.trace.append(
            f"Observation: {len(outcome.hits)} results"
            + (f", top: {outcome.hits[0].url}" if outcome.hits else "")
        )

    def _do_extract(self, run: _ResearchRun, url: str) -> None:
        run.visited.add(url)
        run.extracts_since_search += 1
        if domain_matches(url, self.config.deny_domains):
            run.trace.append(f"Observation: skipped {url} (domain requires authentication)")
            return

        outcome = self.web_client.extract(url)
        if not outcome.ok:
            run.trace.append(f"Observation: extract failed ({outcome.error})")
            return

        run.context_chars += len(outcome.content)
        text = f"{outcome.title}\n\n{outcome.content}" if outcome.title else outcome.content
        self._record_source(run, url, outcome.title, outcome.content, 1.0)
        run.sources[url]["content"] = outcome.content[:SOURCE_PREVIEW_CHARS]

        validation = validate_evidence(url, text, run.candidate, self.config.title_synonyms)
        run.last_validation = validation
        if validation["valid"]:
            run.validated = (url, outcome.title, text, validation)
            run.trace.append(f"Observation: {len(outcome.content)} chars, checklist passed")
        else:
            run.trace.append(
                f"Observation: {len(outcome.content)} chars, rejected: {'; '.join(validation['failures'])}"
            )

    # ----- main loop -----

    def research(self, candidate: Candidate) -> EvidenceRecord:
        """
        Research one candidate.

        Returns:
            EvidenceRecord (never raises for tool, validation or budget problems)
        """
        log = self.logger.for_candidate(candidate["id"])
        run = _ResearchRun(candidate=candidate, tasks=plan_search_tasks(candidate, self.config))
        run.trace.append(f"Task: find public posting for '{candidate['title']}' at '{candidate['company']}'")

        source_url = candidate.get("source_url")
        if source_url:
            if domain_matches(source_url, self.config.deny_domains):
                run.trace.append(f"Thought: original URL {source_url} requires authentication, searching instead")
            else:
                run.pending.append(_PendingUrl(url=source_url, rank=10.0))

        stop_reason = "strategies_exhausted"
        while True:
            if run.validated:
                stop_reason = "validated"
                break
            if run.iterations >= self.config.max_iterations:
                stop_reason = "iteration_budget"
                run.trace.append(f"Thought: iteration budget of {self.config.max_iterations} reached")
                break
            if run.context_chars >= self.config.max_context_chars:
                stop_reason = "context_budget"
                run.trace.append(
                    f"Thought: context budget exceeded ({run.context_chars} >= {self.config.max_context_chars} chars)"
                )
                break

            action = self._next_action(run)
            run.trace.append(f"Thought: {action.thought}")
            if action.tool == "finish":
                break

            run.iterations += 1
            run.trace.append(f"Action {run.iterations}: {action.tool}[{action.argument}]")
            if action.tool == "search":
                self._do_search(run, action.argument)
            else:
                self._do_extract(run, action.argument)

        record = self._build_record(run, stop_reason)
        log.info(
            f"Research {'FOUND' if record['found'] else 'not found'} after {record['iterations']} "
            f"tool calls ({stop_reason})"
            + (f": {record['primary_source']['url']}" if record["primary_source"] else "")
        )
        return record

    def _build_record(self, run: _ResearchRun, stop_reason: str) -> EvidenceRecord:
        candidate = run.candidate
        primary: Optional[WebSource] = None
        evidence_text = ""
        fields = {"requirements": [], "technologies": [], "deadline": None}
        validation = run.last_validation

        if run.validated:
            url, title, evidence_text, validation = run.validated
            run.sources[url]["is_primary"] = True
            primary = dict(run.sources[url])  # type: ignore[assignment]
            primary["content"] = evidence_text[:PRIMARY_PREVIEW_CHARS]
            fields = extract_structured_fields(evidence_text)
            run.trace.append(f"Final: validated source {url}")
        else:
            run.trace.append(f"Final: no validated public listing ({stop_reason})")

        return {
            "candidate_id": candidate["id"],
            "company": candidate["company"],
            "title": candidate["title"],
            "found": primary is not None,
            "primary_source": primary,
            "sources": list(run.sources.values()),
            "evidence_text": evidence_text,
            "requirements": fields["requirements"],
            "technologies": fields["technologies"],
            "deadline": fields["deadline"],
            "iterations": run.iterations,
            "reasoning": "\n".join(run.trace),
            "stop_reason": stop_reason,
            "validation": validation,
        }


def failed_research_record(candidate: Candidate, error: str) -> EvidenceRecord:
    """Substitute record for a research task that raised."""
    return {
        "candidate_id": candidate["id"],
        "company": candidate["company"],
        "title": candidate["title"],
        "found": False,
        "primary_source": None,
        "sources": [],
        "evidence_text": "",
        "requirements": [],
        "technologies": [],
        "deadline": None,
        "iterations": 0,
        "reasoning": f"Research failed: {error}",
        "stop_reason": "agent_error",
        "validation": None,
    }
