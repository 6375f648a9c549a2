import json
import re
from typing import Any, Dict, List, Optional, Union

from veridicus.utils.logging import get_logger

LOGGER = get_logger(__name__)

_FENCED_JSON_RE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_OBJECT_RE = re.compile(r"(\{[\s\S]*\})")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_json_safely(text: str) -> Union[Dict[str, Any], List[Any], None]:
    """Parse JSON from model output, handling common LLM formatting issues.

    Handles markdown code fences, surrounding whitespace, and prose around a
    single JSON object.

    Returns:
        Parsed JSON value or None if parsing fails
    """
    if not text:
        return None

    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        LOGGER.debug(f"Initial JSON parse failed: {e}, looking for an embedded object")

    match = _OBJECT_RE.search(cleaned)
    if match:
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError:
            pass

    LOGGER.warning("Failed to parse JSON from model output", extra={"length": len(text)})
    return None


def extract_fenced_json(text: str) -> Optional[Any]:
    """Parse the first ```json fenced block in ``text``.

    Raises:
        json.JSONDecodeError: If a block is present but is not valid JSON
    """
    if not text:
        return None
    match = _FENCED_JSON_RE.search(text)
    if not match:
        return None
    return json.loads(match.group(1))
