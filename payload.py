"""
Recovery of the ``{explanation, manimCode}`` payload from model output.

Model text is untrusted: it may be bare JSON, JSON inside a markdown fence,
JSON surrounded by chatter, JSON nested inside the explanation field, or no
JSON at all. Each parser below either returns a dict or raises ``ValueError``;
the chain stops at the first success.
"""

import json
import logging
import re
from typing import Callable, Dict, List, Optional, Tuple

from errors import ParseError
from schemas import GenerationResult

SCRIPT_KEYS = ("manimCode", "manim_code", "manimcode", "code", "script")
DEFAULT_EXPLANATION = "Animation generated successfully."

FENCE_PATTERNS = (
    re.compile(r"```json\s*\n([\s\S]*?)```"),
    re.compile(r"```\s*\n([\s\S]*?)```"),
    re.compile(r"```json\s+([\s\S]*?)```"),
)
PYTHON_FENCE = re.compile(r"```(?:python|py)\s*\n([\s\S]*?)```")
BARE_FENCE = re.compile(r"```\s*\n([\s\S]*?)```")
ANY_FENCE = re.compile(r"```[a-zA-Z]*[\s\S]*?```")
OUTER_BRACES = re.compile(r"\{[\s\S]*\}")


def _loads_object(text: str) -> Dict:
    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed


def parse_direct(content: str) -> Dict:
    return _loads_object(content.strip())


def parse_fenced(content: str) -> Dict:
    for pattern in FENCE_PATTERNS:
        match = pattern.search(content)
        if match:
            return _loads_object(match.group(1).strip())
    raise ValueError("no fenced block")


def parse_braced(content: str) -> Dict:
    match = OUTER_BRACES.search(content)
    if not match:
        raise ValueError("no {...} span")
    return _loads_object(match.group(0))


PARSERS: Tuple[Tuple[str, Callable[[str], Dict]], ...] = (
    ("direct", parse_direct),
    ("fenced", parse_fenced),
    ("braced", parse_braced),
)


def parse_structured(content: str) -> Dict:
    """Run the parser chain; raises ParseError listing every failure."""
    failures: List[str] = []
    for name, parser in PARSERS:
        try:
            parsed = parser(content)
        except ValueError as e:  # json.JSONDecodeError is a ValueError
            failures.append(f"{name}: {e}")
            continue
        return _unwrap_nested(parsed)
    raise ParseError("Could not parse model response as JSON (" + "; ".join(failures) + ")")


def _unwrap_nested(parsed: Dict) -> Dict:
    # Some models put the whole JSON document inside the explanation string.
    explanation = parsed.get("explanation")
    if isinstance(explanation, str) and explanation.strip().startswith("{"):
        try:
            return _loads_object(explanation)
        except ValueError:
            pass
    return parsed


def pick_script(parsed: Dict) -> str:
    for key in SCRIPT_KEYS:
        value = parsed.get(key)
        if isinstance(value, str) and value.strip():
            return value
    data = parsed.get("data")
    if isinstance(data, dict) and isinstance(data.get("manimCode"), str):
        return data["manimCode"]
    return ""


def extract_code_block(content: str) -> Optional[GenerationResult]:
    """Fallback for plain prose answers carrying a fenced code block."""
    match = PYTHON_FENCE.search(content) or BARE_FENCE.search(content)
    if not match or not match.group(1).strip():
        return None
    explanation = ANY_FENCE.sub("", content).strip()
    return GenerationResult(explanation=explanation or DEFAULT_EXPLANATION, script=match.group(1))


def recover_generation(content: str) -> GenerationResult:
    """
    Turn raw model text into a GenerationResult.

    Raises ParseError when neither the structured chain nor the code-block
    fallback yields a script.
    """
    if not content or not content.strip():
        raise ParseError("No content in model response")

    try:
        parsed = parse_structured(content)
        script = pick_script(parsed)
        if not script:
            raise ParseError("Missing manimCode in response")
        explanation = parsed.get("explanation")
        if not isinstance(explanation, str) or not explanation.strip():
            explanation = DEFAULT_EXPLANATION
        reasoning = parsed.get("reasoning")
        return GenerationResult(
            explanation=explanation,
            script=script,
            reasoning=reasoning if isinstance(reasoning, str) else "",
        )
    except ParseError as structured_error:
        logging.warning(f"JSON parsing failed, trying code block extraction: {structured_error.message}")
        fallback = extract_code_block(content)
        if fallback is None:
            raise ParseError(
                f"Could not extract Manim code from response. {structured_error.message}"
            ) from structured_error
        return fallback
