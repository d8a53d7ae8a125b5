"""
Centralized error handling for the email opportunity pipeline.

Error taxonomy:
- StageFailure: fatal to the run (unparsable LLM output, violated precondition).
  The workflow records it and moves the run to the "error" phase.
- A failed search/extract call is not an exception: the web client returns
  an unsuccessful outcome and the research agent records it as a failed
  observation.
- Validation failures and budget exhaustion are not exceptions either; they
  are reported on the EvidenceRecord (found=False plus a stop reason).
"""

import logging
from functools import wraps
from typing import Any, Callable, Dict, List
from dataclasses import dataclass


class PipelineStageError(Exception):
    """Base class for pipeline errors carrying the layer that raised them."""

    def __init__(self, message: str, layer: str = "unknown"):
        super().__init__(message)
        self.layer = layer


class StageFailure(PipelineStageError):
    """A stage cannot produce a usable result; the run must stop."""


class StructuredOutputError(StageFailure):
    """LLM returned output that does not parse or does not match the schema."""


@dataclass
class PipelineError:
    """One entry of the run's ordered error list."""

    layer: str  # e.g., "layer2", "layer4"
    operation: str  # e.g., "classification", "verification"
    message: str

    def format(self) -> str:
        """Single-line form stored in WorkflowRun.errors."""
        return f"[{self.layer}] {self.operation}: {self.message}"


class ErrorCollector:
    """
    Collects non-fatal errors during one stage of a run.

    Nodes return get_error_messages() as their "errors" delta; the workflow
    appends it to the run's ordered error list.
    """

    def __init__(self):
        self.errors: List[PipelineError] = []

    def add_error(self, layer: str, operation: str, message: str) -> None:
        self.errors.append(PipelineError(layer=layer, operation=operation, message=message))

    def get_error_messages(self) -> List[str]:
        return [e.format() for e in self.errors]


def guarded_stage(stage_name: str, layer: str):
    """
    Decorator for LangGraph node functions.

    Converts any exception escaping the node into a state delta that appends
    one error message and moves the run to the "error" phase, so the graph
    never raises into the caller.

    Usage:
        @guarded_stage("classification", layer="layer2")
        def classify(state):
            ...
            return {"candidates": [...], "phase": "classifying"}
    """

    def decorator(func: Callable[..., Dict[str, Any]]) -> Callable[..., Dict[str, Any]]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Dict[str, Any]:
            logger = logging.getLogger(func.__module__)
            try:
                return func(*args, **kwargs)
            except Exception as e:
                error = PipelineError(
                    layer=e.layer if isinstance(e, PipelineStageError) and e.layer != "unknown" else layer,
                    operation=stage_name,
                    message=str(e) or type(e).__name__,
                )
                logger.error(f"[{layer}] [{stage_name}] ✗ Failed: {e}", exc_info=True)
                return {"errors": [error.format()], "phase": "error"}

        return wrapper

    return decorator
