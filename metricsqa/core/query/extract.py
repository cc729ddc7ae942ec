"""
EXTRACT MODULE - Recover structured queries from free-text model output

Purpose:
    1. Pull the JSON object/array out of a completion that may be wrapped in prose
    2. Split an aggregation array into its individual stage documents

Data Flow:
    completion -> extract_json() -> filter JSON
    "[...]"    -> split_pipeline_stages() -> [stage dict, stage dict, ...]
"""

import json
from typing import Any, Dict, List

from metricsqa.core.exceptions import QueryExecutionError


# ============================================================================
# JSON EXTRACTION
# ============================================================================


def _is_valid_json(candidate: str) -> bool:
    try:
        json.loads(candidate)
    except ValueError:
        return False
    return True


def extract_json(text: str) -> str:
    """
    Return the most plausible JSON object or array inside `text`.

    Tries the span from the first "{" to the last "}", then the span from
    the first "[" to the last "]". The first span that parses wins. When
    neither parses, the trimmed input comes back unchanged and the caller's
    own parsing decides what happens next.

    This matches outermost delimiters, it is not a JSON scanner: a stray
    "{" or "}" in the surrounding prose widens the span and breaks it.

    Example:
        Input:  'Sure, here you go: { "circle": "Karnataka" } - thanks'
        Output: '{ "circle": "Karnataka" }'
    """
    cleaned = text.strip()

    for opening, closing in (("{", "}"), ("[", "]")):
        start = cleaned.find(opening)
        end = cleaned.rfind(closing)
        if start != -1 and end > start:
            candidate = cleaned[start : end + 1]
            if _is_valid_json(candidate):
                return candidate

    return cleaned


# ============================================================================
# AGGREGATION STAGE SPLITTING
# ============================================================================


def split_pipeline_stages(pipeline_text: str) -> List[str]:
    """
    Split a JSON aggregation array into the text of each stage document.

    Walks the characters between the outer brackets keeping a brace depth:
        - "{" increments depth, "}" decrements it
        - a "}" that brings depth back to 0 closes a stage
        - a "," at depth 0 discards whatever was accumulated

    String literals are not tracked, so braces or commas inside a quoted
    value (a $regex pattern, say) will shift the stage boundaries.

    Example:
        Input:  '[{"$match": {"circle": "Karnataka"}}, {"$limit": 5}]'
        Output: ['{"$match": {"circle": "Karnataka"}}', '{"$limit": 5}']
    """
    trimmed = pipeline_text.strip()
    # Text after the closing "]" is an error, never an empty pipeline
    if not (trimmed.startswith("[") and trimmed.endswith("]")):
        raise QueryExecutionError(
            "Aggregation pipeline must be a JSON array enclosed in [ ]"
        )

    stages: List[str] = []
    depth = 0
    current: List[str] = []

    for char in trimmed[1:-1]:
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1

        current.append(char)

        if depth == 0 and char == "}":
            stage = "".join(current).strip()
            if stage:
                stages.append(stage)
            current = []
        elif depth == 0 and char == ",":
            current = []

    return stages


def parse_pipeline(pipeline_text: str) -> List[Dict[str, Any]]:
    """
    Split and decode an aggregation array into stage dicts.

    Raises:
        QueryExecutionError: a stage is not valid JSON or not an object
    """
    pipeline = []
    for position, stage_text in enumerate(split_pipeline_stages(pipeline_text)):
        try:
            stage = json.loads(stage_text)
        except ValueError as error:
            raise QueryExecutionError(
                f"Stage {position} is not valid JSON: {error}"
            ) from error
        if not isinstance(stage, dict):
            raise QueryExecutionError(f"Stage {position} is not a JSON object")
        pipeline.append(stage)
    return pipeline
