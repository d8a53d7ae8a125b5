"""
Logging for the email opportunity pipeline.

Every line is prefixed with the run, layer and candidate it belongs to, e.g.

    [run:3f2a9c1e] [layer3] [msg-acme-1-cand-0] Extracted https://acme.dk/careers

so one candidate's research can be followed through concurrent batches.
"""

import logging
import sys
from typing import Optional


class PipelineLogger:
    """Thin wrapper over a stdlib logger that tags messages with run/layer/candidate."""

    def __init__(
        self,
        name: str,
        run_id: Optional[str] = None,
        layer: Optional[str] = None,
        candidate_id: Optional[str] = None,
    ):
        self.name = name
        self.logger = logging.getLogger(name)
        self.run_id = run_id
        self.layer = layer
        self.candidate_id = candidate_id

    def for_candidate(self, candidate_id: str) -> "PipelineLogger":
        return PipelineLogger(self.name, run_id=self.run_id, layer=self.layer, candidate_id=candidate_id)

    def _tag(self, message: str) -> str:
        tags = []
        if self.run_id:
            tags.append(f"[run:{self.run_id[:8]}]")
        if self.layer:
            tags.append(f"[{self.layer}]")
        if self.candidate_id:
            tags.append(f"[{self.candidate_id}]")
        return " ".join(tags + [message])

    def debug(self, message: str, **kwargs):
        self.logger.debug(self._tag(message), **kwargs)

    def info(self, message: str, **kwargs):
        self.logger.info(self._tag(message), **kwargs)

    def warning(self, message: str, **kwargs):
        self.logger.warning(self._tag(message), **kwargs)

    def error(self, message: str, **kwargs):
        self.logger.error(self._tag(message), **kwargs)

    def exception(self, message: str, **kwargs):
        self.logger.exception(self._tag(message), **kwargs)


def setup_logging(level: str = "INFO", format: str = "simple") -> None:
    """
    Install one stdout handler on the root logger.

    Args:
        level: LOG_LEVEL from Config
        format: "simple" for humans, "json" for log shippers
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    if format == "json":
        handler.setFormatter(logging.Formatter(
            '{"time": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}'
        ))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    # FireCrawl's HTTP stack and the OpenAI client log every request at INFO
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))


def get_logger(
    name: str,
    run_id: Optional[str] = None,
    layer: Optional[str] = None,
    candidate_id: Optional[str] = None,
) -> PipelineLogger:
    return PipelineLogger(name, run_id=run_id, layer=layer, candidate_id=candidate_id)
