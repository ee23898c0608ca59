"""
Repair cascade for LLM JSON output.

Model responses arrive wrapped in markdown fences, with trailing commas,
prose around the payload, or raw newlines inside string values (which
json.loads rejects in strict mode). Each stage below is a pure
text -> text transform; after every stage a parse is attempted and the
first success wins.

Stages, in order:
    strip_fences              ```json ... ``` wrappers
    strip_trailing_commas     ,] and ,}
    extract_outermost         the outermost [...] (or {...}) by bracket matching
    escape_string_controls    raw \\n \\r \\t inside strings -> escapes
    strip_control_chars       any remaining C0 control characters
"""

import json
import logging
import re
from typing import Any, Callable, List, Tuple

from utils.errors import JSONRepairError

logger = logging.getLogger(__name__)

_FENCE_OPEN_RE = re.compile(r"^\s*```(?:json|JSON)?\s*", re.MULTILINE)
_FENCE_CLOSE_RE = re.compile(r"```\s*$", re.MULTILINE)
_TRAILING_COMMA_RE = re.compile(r",\s*([\]}])")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")

_CLOSERS = {"[": "]", "{": "}"}


def strip_fences(text: str) -> str:
    text = _FENCE_OPEN_RE.sub("", text)
    return _FENCE_CLOSE_RE.sub("", text).strip()


def strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def extract_outermost(text: str) -> str:
    """
    Cut the first top-level JSON container out of surrounding prose.

    Whichever of "[" / "{" appears first opens the container; the matching
    closer is found by depth counting outside string literals. An
    unterminated container falls back to the last closer in the text.
    """
    starts = [i for i in (text.find("["), text.find("{")) if i != -1]
    if not starts:
        return text

    start = min(starts)
    opener = text[start]
    closer = _CLOSERS[opener]

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if escaped:
            escaped = False
            continue
        if in_string:
            if ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]

    end = text.rfind(closer)
    if end > start:
        return text[start:end + 1]
    return text[start:]


def escape_string_controls(text: str) -> str:
    """Escape raw newlines/tabs inside string literals; drop other controls there."""
    out: List[str] = []
    in_string = False
    escaped = False

    for ch in text:
        if escaped:
            out.append(ch)
            escaped = False
            continue
        if ch == "\\" and in_string:
            out.append(ch)
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            out.append(ch)
            continue
        if in_string:
            if ch == "\n":
                out.append("\\n")
                continue
            if ch == "\r":
                out.append("\\r")
                continue
            if ch == "\t":
                out.append("\\t")
                continue
            if ord(ch) < 32:
                continue
        out.append(ch)

    return strip_trailing_commas("".join(out))


def strip_control_chars(text: str) -> str:
    return _CONTROL_RE.sub("", text)


STAGES: Tuple[Tuple[str, Callable[[str], str]], ...] = (
    ("strip_fences", strip_fences),
    ("strip_trailing_commas", strip_trailing_commas),
    ("extract_outermost", extract_outermost),
    ("escape_string_controls", escape_string_controls),
    ("strip_control_chars", strip_control_chars),
)


def _try_parse(text: str) -> Tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except ValueError:
        return False, None


def repair_json(raw: str) -> Any:
    """
    Parse model output, applying repair stages until one parses.

    Raises:
        JSONRepairError: every stage failed
    """
    if not raw or not raw.strip():
        raise JSONRepairError("Empty response")

    text = raw
    ok, value = _try_parse(text)
    if ok:
        return value

    for name, stage in STAGES:
        text = stage(text)
        ok, value = _try_parse(text)
        if ok:
            logger.debug(f"JSON repaired at stage {name}")
            return value

    raise JSONRepairError(f"JSON repair failed: {raw[:120]!r}")


def repair_json_array(raw: str) -> List[Any]:
    """repair_json, with a lone object wrapped into a one-element list."""
    value = repair_json(raw)
    return value if isinstance(value, list) else [value]
