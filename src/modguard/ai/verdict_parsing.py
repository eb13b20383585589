"""Parsing and validation of judgement service responses."""

from __future__ import annotations

import json
from typing import Any, Dict

import jsonschema
from jsonschema import ValidationError

from modguard.datatypes.moderation_datatypes import JUDGEMENT_ALIASES, ModerationJudgement
from modguard.errors import ClassificationError
from modguard.util.logger import get_logger

logger = get_logger("verdict_parsing")

# Sent to the service as the structured output format
VERDICT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "judgement": {
            "type": "string",
            "enum": [judgement.value for judgement in ModerationJudgement],
        },
        "reasoning": {"type": "string"},
    },
    "required": ["judgement", "reasoning"],
    "additionalProperties": False,
}

# Accepts older judgement names some prompts still produce
_ACCEPTED_JUDGEMENTS = [judgement.value for judgement in ModerationJudgement] + [
    alias.capitalize() for alias in JUDGEMENT_ALIASES
]
VALIDATION_SCHEMA: Dict[str, Any] = {
    **VERDICT_SCHEMA,
    "properties": {
        "judgement": {"type": "string", "enum": _ACCEPTED_JUDGEMENTS},
        "reasoning": {"type": "string"},
    },
}


def parse_verdict_payload(raw: str) -> tuple[ModerationJudgement, str]:
    """Parse the raw response text into a judgement and its reasoning.

    Args:
        raw: Response text of a completed job.

    Returns:
        Tuple of the parsed judgement and the reasoning string.

    Raises:
        ClassificationError: If the text is not JSON or does not match the schema.
    """
    try:
        payload = json.loads(raw.strip())
    except json.JSONDecodeError as exc:
        logger.warning("[PARSE] Response is not JSON: %s", exc)
        raise ClassificationError("Response is not valid JSON") from exc

    if isinstance(payload, dict) and isinstance(payload.get("judgement"), str):
        # Alias names are matched case-insensitively before validation
        judgement_name = payload["judgement"]
        for accepted in _ACCEPTED_JUDGEMENTS:
            if accepted.lower() == judgement_name.lower():
                payload["judgement"] = accepted

    try:
        jsonschema.validate(instance=payload, schema=VALIDATION_SCHEMA)
    except ValidationError as exc:
        logger.warning("[PARSE] Schema validation failed: %s", exc.message)
        raise ClassificationError(f"Response does not match the verdict schema: {exc.message}") from exc

    return ModerationJudgement.parse(payload["judgement"]), payload["reasoning"]
