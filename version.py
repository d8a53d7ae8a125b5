"""
Version information for the email opportunity pipeline.

This file is the single source of truth for version numbers.
"""

__version__ = "0.1.0"
__version_info__ = (0, 1, 0)
