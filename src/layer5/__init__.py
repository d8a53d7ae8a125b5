"""
Layer 5: Aggregator

Merges research findings onto candidates and builds the run summary.
"""

from src.layer5.aggregator import aggregator_node, build_summary, merge_research

__all__ = ["aggregator_node", "build_summary", "merge_research"]
