"""
Structured JSON logger for pipeline events.

Emits JSON-formatted events for:
- Layer start/complete/error/skip tracking
- Per-candidate research progress
- Pipeline start/complete with final phase

Usage:
    events = StructuredLogger(email_id="msg-123", run_id=run_id)
    events.layer_start(2)
    # ... do work ...
    events.layer_complete(2, metadata={"candidates": 3, "matched": 1})
"""

import json
import sys
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from dataclasses import dataclass, asdict
from enum import Enum


class EventType(str, Enum):
    """Standard pipeline event types."""
    LAYER_START = "layer_start"
    LAYER_COMPLETE = "layer_complete"
    LAYER_ERROR = "layer_error"
    LAYER_SKIP = "layer_skip"
    RESEARCH_PROGRESS = "research_progress"
    PIPELINE_START = "pipeline_start"
    PIPELINE_COMPLETE = "pipeline_complete"


class LayerStatus(str, Enum):
    """Layer execution status."""
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass
class LogEvent:
    """Structured log event with all optional fields."""
    timestamp: str
    event: str
    email_id: str
    run_id: Optional[str] = None
    layer: Optional[int] = None
    layer_name: Optional[str] = None
    status: Optional[str] = None
    duration_ms: Optional[int] = None
    candidate_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_json(self) -> str:
        """Convert to JSON string, excluding None values."""
        data = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(data, default=str)


class StructuredLogger:
    """
    Structured JSON logger for pipeline events.

    Emits JSON lines to stdout by default. A sink callable can be supplied to
    capture events instead (tests, callers forwarding to their own transport).
    """

    LAYER_NAMES = {
        1: "content_normalizer",
        2: "match_classifier",
        3: "evidence_researcher",
        4: "match_verifier",
        5: "aggregator",
    }

    def __init__(
        self,
        email_id: str,
        run_id: Optional[str] = None,
        enabled: bool = True,
        sink: Optional[Callable[[LogEvent], None]] = None,
    ):
        """
        Initialize structured logger.

        Args:
            email_id: Email ID for correlation
            run_id: Pipeline run ID for correlation
            enabled: Whether to emit events (can disable for testing)
            sink: Receives each event instead of printing it
        """
        self.email_id = email_id
        self.run_id = run_id
        self.enabled = enabled
        self.sink = sink
        self._layer_start_times: Dict[int, float] = {}

    def _emit(self, event: LogEvent) -> None:
        if not self.enabled:
            return
        if self.sink is not None:
            self.sink(event)
        else:
            print(event.to_json(), file=sys.stdout, flush=True)

    def _now(self) -> str:
        """Get current UTC timestamp in ISO format."""
        return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def _elapsed_ms(self, layer: int) -> Optional[int]:
        started = self._layer_start_times.pop(layer, None)
        if started is None:
            return None
        return int((time.time() - started) * 1000)

    def emit(
        self,
        event: str,
        layer: Optional[int] = None,
        status: Optional[str] = None,
        duration_ms: Optional[int] = None,
        candidate_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """Emit a custom log event."""
        self._emit(LogEvent(
            timestamp=self._now(),
            event=event,
            email_id=self.email_id,
            run_id=self.run_id,
            layer=layer,
            layer_name=self.LAYER_NAMES.get(layer) if layer is not None else None,
            status=status,
            duration_ms=duration_ms,
            candidate_id=candidate_id,
            metadata=metadata,
            error=error,
        ))

    # ===== Convenience Methods =====

    def layer_start(self, layer: int) -> None:
        self._layer_start_times[layer] = time.time()
        self.emit(EventType.LAYER_START.value, layer=layer)

    def layer_complete(
        self,
        layer: int,
        duration_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log layer execution complete.

        Args:
            layer: Layer number
            duration_ms: Duration (auto-calculated if layer_start was called)
            metadata: Additional metadata (e.g., candidate counts)
        """
        if duration_ms is None:
            duration_ms = self._elapsed_ms(layer)
        self.emit(
            EventType.LAYER_COMPLETE.value,
            layer=layer,
            status=LayerStatus.SUCCESS.value,
            duration_ms=duration_ms,
            metadata=metadata,
        )

    def layer_error(
        self,
        layer: int,
        error: str,
        duration_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        if duration_ms is None:
            duration_ms = self._elapsed_ms(layer)
        self.emit(
            EventType.LAYER_ERROR.value,
            layer=layer,
            status=LayerStatus.ERROR.value,
            duration_ms=duration_ms,
            error=error,
            metadata=metadata,
        )

    def layer_skip(self, layer: int, reason: str) -> None:
        self.emit(
            EventType.LAYER_SKIP.value,
            layer=layer,
            status=LayerStatus.SKIPPED.value,
            metadata={"reason": reason},
        )

    def research_progress(
        self,
        candidate_id: str,
        found: bool,
        iterations: int,
        stop_reason: str,
    ) -> None:
        """Log the outcome of one candidate's research task."""
        self.emit(
            EventType.RESEARCH_PROGRESS.value,
            layer=3,
            candidate_id=candidate_id,
            metadata={"found": found, "iterations": iterations, "stop_reason": stop_reason},
        )

    def pipeline_start(self, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.emit(EventType.PIPELINE_START.value, metadata=metadata)

    def pipeline_complete(
        self,
        status: str,
        duration_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log pipeline execution complete.

        Args:
            status: Final phase ("complete" or "error")
            duration_ms: Total duration
            metadata: Summary metadata
        """
        self.emit(
            EventType.PIPELINE_COMPLETE.value,
            status=status,
            duration_ms=duration_ms,
            metadata=metadata,
        )


# ===== Context Manager for Layer Timing =====

class LayerContext:
    """
    Context manager for automatic layer timing.

    Usage:
        with LayerContext(events, 2) as ctx:
            # ... do work ...
            ctx.add_metadata("matched", 1)
    """

    def __init__(self, logger: StructuredLogger, layer: int):
        self.logger = logger
        self.layer = layer
        self.metadata: Dict[str, Any] = {}
        self._start_time: float = 0

    def __enter__(self) -> "LayerContext":
        self._start_time = time.time()
        self.logger.layer_start(self.layer)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        duration_ms = int((time.time() - self._start_time) * 1000)

        if exc_type is not None:
            self.logger.layer_error(
                self.layer,
                str(exc_val),
                duration_ms,
                self.metadata if self.metadata else None,
            )
            return False  # Re-raise exception

        self.logger.layer_complete(
            self.layer,
            duration_ms,
            self.metadata if self.metadata else None,
        )
        return False

    def add_metadata(self, key: str, value: Any) -> None:
        """Add metadata to be included in completion event."""
        self.metadata[key] = value


def get_structured_logger(
    email_id: str,
    run_id: Optional[str] = None,
    enabled: Optional[bool] = None,
) -> StructuredLogger:
    """
    Get a structured logger instance.

    Args:
        email_id: Email ID for event correlation
        run_id: Pipeline run ID
        enabled: Whether to emit events (defaults to Config.STRUCTURED_EVENTS)
    """
    if enabled is None:
        from src.common.config import Config
        enabled = Config.STRUCTURED_EVENTS
    return StructuredLogger(email_id, run_id=run_id, enabled=enabled)
