"""
Helpers for pulling JSON out of free-form model answers.
"""

import json
import re
from typing import Any

_FENCE = re.compile(r'^```(?:json)?\s*|\s*```$', re.IGNORECASE)


def clean_json_response(response: str) -> str:
    """Drop a surrounding ```json ... ``` fence, if any."""
    return _FENCE.sub('', response.strip()).strip()


def load_json_object(response: str) -> Any:
    """Parse the JSON object in a model answer.

    Prose around the object is tolerated: when the cleaned text does not parse,
    the slice between the first '{' and the last '}' is tried.

    Raises:
        json.JSONDecodeError: If no parseable object is present
    """
    cleaned = clean_json_response(response)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        start = cleaned.find('{')
        end = cleaned.rfind('}')
        if start == -1 or end <= start:
            raise
        return json.loads(cleaned[start:end + 1])
