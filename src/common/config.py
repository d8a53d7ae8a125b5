"""
Configuration loader for the email opportunity pipeline.

Loads all settings from environment variables (.env file).
Validates required settings and provides type-safe access.

Caller-owned settings (match criteria, domain lists, verification policy)
live in src/common/pipeline_config.py and are passed per run.
"""

import os
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """
    Centralized configuration for all pipeline components.

    All values loaded from environment variables - NO SECRETS IN CODE.
    """

    # ===== LLM APIs =====
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "")

    # ===== Web Search / Extract =====
    FIRECRAWL_API_KEY: str = os.getenv("FIRECRAWL_API_KEY", "")

    # ===== LLM Model Configuration =====
    DEFAULT_MODEL: str = os.getenv("DEFAULT_MODEL", "gpt-4o")  # Classification + verification
    CHEAP_MODEL: str = os.getenv("CHEAP_MODEL", "gpt-4o-mini")  # Research planner

    # Temperature settings
    CLASSIFIER_TEMPERATURE: float = float(os.getenv("CLASSIFIER_TEMPERATURE", "0.1"))
    RESEARCH_TEMPERATURE: float = float(os.getenv("RESEARCH_TEMPERATURE", "0.2"))
    VERIFICATION_TEMPERATURE: float = float(os.getenv("VERIFICATION_TEMPERATURE", "0.1"))

    # ===== Layer 2: Classifier =====
    # ~30k chars keeps a single call inside the model context window
    CLASSIFIER_MAX_CHARS: int = int(os.getenv("CLASSIFIER_MAX_CHARS", "30000"))
    CLASSIFIER_MAX_URLS: int = int(os.getenv("CLASSIFIER_MAX_URLS", "50"))
    # Split long newsletters into chunks and classify each one separately
    ENABLE_CHUNKED_CLASSIFICATION: bool = os.getenv("ENABLE_CHUNKED_CLASSIFICATION", "false").lower() == "true"
    CHUNKED_THRESHOLD_CHARS: int = int(os.getenv("CHUNKED_THRESHOLD_CHARS", "8000"))

    # ===== Layer 3: Research =====
    RESEARCH_MAX_ITERATIONS: int = int(os.getenv("RESEARCH_MAX_ITERATIONS", "15"))
    RESEARCH_MAX_CONCURRENT: int = int(os.getenv("RESEARCH_MAX_CONCURRENT", "3"))
    RESEARCH_MAX_CONTEXT_CHARS: int = int(os.getenv("RESEARCH_MAX_CONTEXT_CHARS", "60000"))
    RESEARCH_SEARCH_LIMIT: int = int(os.getenv("RESEARCH_SEARCH_LIMIT", "5"))
    # Let the cheap model pick search/extract actions instead of the fixed strategy queue
    ENABLE_LLM_RESEARCH_PLANNER: bool = os.getenv("ENABLE_LLM_RESEARCH_PLANNER", "false").lower() == "true"

    # ===== Observability =====
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "simple")
    STRUCTURED_EVENTS: bool = os.getenv("STRUCTURED_EVENTS", "true").lower() == "true"

    @classmethod
    def validate(cls) -> None:
        """
        Validate that all required configuration is present.
        Raises ValueError if critical settings are missing.
        """
        required_settings = {
            "OPENAI_API_KEY": cls.OPENAI_API_KEY,
            "FIRECRAWL_API_KEY": cls.FIRECRAWL_API_KEY,
        }

        missing = [name for name, value in required_settings.items() if not value]

        if missing:
            raise ValueError(
                f"Missing required configuration: {', '.join(missing)}. "
                f"Please check your .env file."
            )

        if cls.RESEARCH_MAX_ITERATIONS < 1:
            raise ValueError("RESEARCH_MAX_ITERATIONS must be at least 1")
        if cls.RESEARCH_MAX_CONCURRENT < 1:
            raise ValueError("RESEARCH_MAX_CONCURRENT must be at least 1")

    @classmethod
    def get_llm_base_url(cls) -> Optional[str]:
        """LLM base URL (None to use OpenAI directly)."""
        return cls.OPENAI_BASE_URL or None

    @classmethod
    def summary(cls) -> str:
        """Return a summary of the current configuration (safe for logging)."""
        return f"""
Configuration Summary:
  LLM: OpenAI {'✓' if cls.OPENAI_API_KEY else '✗ Missing'} (default={cls.DEFAULT_MODEL}, cheap={cls.CHEAP_MODEL})
  FireCrawl: {'✓ Configured' if cls.FIRECRAWL_API_KEY else '✗ Missing'}
  Classifier: max_chars={cls.CLASSIFIER_MAX_CHARS}, chunked={'Enabled' if cls.ENABLE_CHUNKED_CLASSIFICATION else 'Disabled'}
  Research: max_iterations={cls.RESEARCH_MAX_ITERATIONS}, max_concurrent={cls.RESEARCH_MAX_CONCURRENT}
  Research planner: {'LLM' if cls.ENABLE_LLM_RESEARCH_PLANNER else 'Strategy queue'}
  Structured events: {'Enabled' if cls.STRUCTURED_EVENTS else 'Disabled'}
"""
