"""
LLM Factory Module.

Provides factory functions for creating chat models with per-run token
accounting, and the single structured-call helper every LLM-backed layer
goes through.

Usage:
    from src.common.llm_factory import create_llm, invoke_structured, TokenUsageCallback

    usage = TokenUsageCallback()
    llm = create_llm(layer="layer2", usage=usage)
    result = invoke_structured(llm, SYSTEM_PROMPT, user_prompt, ClassificationOutput, layer="layer2")

No module-level run context: each run builds its own models and its own
TokenUsageCallback, so concurrent runs never share accounting state.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Type, TypeVar

from langchain_core.callbacks import BaseCallbackHandler
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.outputs import LLMResult
from langchain_openai import ChatOpenAI
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from src.common.config import Config
from src.common.json_utils import parse_structured_output

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class TokenUsageCallback(BaseCallbackHandler):
    """
    LangChain callback handler that totals token usage per layer.

    Research agents run in worker threads, so updates take a lock.
    """

    def __init__(self):
        super().__init__()
        self._lock = threading.Lock()
        self.by_layer: Dict[str, Dict[str, int]] = {}
        self._layers: Dict[Any, str] = {}

    def on_chat_model_start(self, serialized, messages, *, run_id, tags=None, metadata=None, **kwargs) -> None:
        layer = (metadata or {}).get("layer", "unknown")
        with self._lock:
            self._layers[run_id] = layer

    def on_llm_end(self, response: LLMResult, *, run_id=None, **kwargs) -> None:
        usage = (response.llm_output or {}).get("token_usage", {}) or {}
        input_tokens = usage.get("prompt_tokens", 0) or usage.get("input_tokens", 0)
        output_tokens = usage.get("completion_tokens", 0) or usage.get("output_tokens", 0)
        with self._lock:
            layer = self._layers.pop(run_id, "unknown")
            totals = self.by_layer.setdefault(layer, {"calls": 0, "input_tokens": 0, "output_tokens": 0})
            totals["calls"] += 1
            totals["input_tokens"] += input_tokens
            totals["output_tokens"] += output_tokens

    def total_tokens(self) -> int:
        with self._lock:
            return sum(t["input_tokens"] + t["output_tokens"] for t in self.by_layer.values())


def create_llm(
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    layer: Optional[str] = None,
    usage: Optional[TokenUsageCallback] = None,
    json_mode: bool = True,
    **kwargs: Any,
) -> ChatOpenAI:
    """
    Create a ChatOpenAI instance for one pipeline layer.

    Args:
        model: Model name (defaults to Config.DEFAULT_MODEL)
        temperature: Temperature (defaults to Config.CLASSIFIER_TEMPERATURE)
        layer: Layer name, attached as run metadata for usage attribution
        usage: Per-run token accounting callback
        json_mode: Request a JSON object response format
        **kwargs: Additional ChatOpenAI parameters

    Example:
        llm = create_llm(layer="layer4", temperature=Config.VERIFICATION_TEMPERATURE)
        response = llm.invoke([SystemMessage(content="..."), HumanMessage(content="...")])
    """
    effective_model = model or Config.DEFAULT_MODEL
    effective_temperature = temperature if temperature is not None else Config.CLASSIFIER_TEMPERATURE

    callbacks: List[BaseCallbackHandler] = [usage] if usage is not None else []
    if json_mode:
        kwargs.setdefault("model_kwargs", {})["response_format"] = {"type": "json_object"}

    llm = ChatOpenAI(
        model=effective_model,
        temperature=effective_temperature,
        api_key=Config.OPENAI_API_KEY,
        base_url=Config.get_llm_base_url(),
        callbacks=callbacks,
        metadata={"layer": layer or "unknown"},
        **kwargs,
    )

    logger.debug(f"Created OpenAI LLM: model={effective_model}, layer={layer}, json_mode={json_mode}")
    return llm


def create_cheap_llm(
    layer: Optional[str] = None,
    usage: Optional[TokenUsageCallback] = None,
    **kwargs: Any,
) -> ChatOpenAI:
    """Create a ChatOpenAI instance using the cheap model (research planning)."""
    kwargs.setdefault("temperature", Config.RESEARCH_TEMPERATURE)
    return create_llm(model=Config.CHEAP_MODEL, layer=layer, usage=usage, **kwargs)


@retry(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True,
)
def invoke_structured(
    llm: Any,
    system_prompt: str,
    user_prompt: str,
    model_cls: Type[ModelT],
    layer: str = "unknown",
) -> ModelT:
    """
    Call a chat model and validate its JSON answer against a pydantic schema.

    Retried once (tenacity) for transient API errors and one-off malformed
    output; the final failure is re-raised.

    Raises:
        StructuredOutputError: Output is not JSON or does not fit model_cls
    """
    response = llm.invoke([
        SystemMessage(content=system_prompt),
        HumanMessage(content=user_prompt),
    ])
    content = response.content if hasattr(response, "content") else str(response)
    if isinstance(content, list):
        # Some providers return content blocks
        content = "".join(
            block.get("text", "") if isinstance(block, dict) else str(block) for block in content
        )
    return parse_structured_output(content, model_cls, layer=layer)
