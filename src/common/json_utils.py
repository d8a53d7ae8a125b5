"""
JSON Utilities for LLM Response Parsing.

LLM output is treated as untrusted: it is parsed leniently (code fences,
surrounding prose, json-repair for malformed JSON) and then validated against
a pydantic schema. Anything that survives neither step is a StructuredOutputError.
"""

import json
import re
from typing import Any, Dict, Type, TypeVar

from json_repair import repair_json
from pydantic import BaseModel, ValidationError

from src.common.error_handling import StructuredOutputError

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_llm_json(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object from an LLM response with error recovery.

    Handles:
    - Markdown code blocks (```json ... ```)
    - JSON embedded in surrounding text
    - Single quotes, trailing commas, unquoted keys (via json-repair)
    - A single object wrapped in a list

    Raises:
        ValueError: If no JSON object can be extracted or repaired

    Example:
        >>> parse_llm_json('```json\\n{"matched": true}\\n```')
        {'matched': True}
    """
    if not text or not text.strip():
        raise ValueError("Empty input: no JSON content to parse")

    json_str = _extract_json_object(_FENCE_RE.sub("", text.strip()))

    try:
        parsed = json.loads(json_str)
    except json.JSONDecodeError:
        parsed = repair_json(json_str, return_objects=True)

    if isinstance(parsed, list) and len(parsed) == 1:
        parsed = parsed[0]
    if not isinstance(parsed, dict) or not parsed:
        raise ValueError(f"Could not recover a JSON object from: {text[:200]}")
    return parsed


def parse_structured_output(text: str, model_cls: Type[ModelT], layer: str = "unknown") -> ModelT:
    """
    Parse and validate an LLM response against a pydantic schema.

    Args:
        text: Raw LLM response content
        model_cls: Pydantic model describing the expected output
        layer: Layer tag attached to the raised error

    Raises:
        StructuredOutputError: If the text is not JSON or does not fit the schema
    """
    try:
        data = parse_llm_json(text)
    except ValueError as e:
        raise StructuredOutputError(f"Unparsable {model_cls.__name__}: {e}", layer=layer) from e

    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise StructuredOutputError(
            f"{model_cls.__name__} failed schema validation: {e.error_count()} error(s): "
            f"{e.errors()[0].get('msg', '')}",
            layer=layer,
        ) from e


def _extract_json_object(text: str) -> str:
    """
    Extract the outermost JSON object from text that may contain prose.

    Raises:
        ValueError: If no JSON object pattern is found
    """
    if text.startswith("{") or text.startswith("["):
        return text

    json_match = re.search(r"\{.*\}", text, re.DOTALL)
    if json_match:
        return json_match.group(0)

    raise ValueError(f"No JSON object found in text: {text[:200]}")
