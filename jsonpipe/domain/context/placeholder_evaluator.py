"""
Placeholder evaluation over the JSON root.

``${{ expr }}`` markers are JSONPath expressions rooted at the array of entry
payloads (``$[0]`` is the earliest entry, ``$[-1]`` the latest). A string that
is exactly one placeholder is replaced by the raw query result, keeping its
type. Placeholders embedded in longer text are replaced by their string form.
``\\${{`` and ``\\$`` escape a literal ``${{`` and ``$``.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional
from functools import lru_cache
import json
import re

import structlog
from jsonpath_ng.ext import parse as parse_jsonpath

from jsonpipe.domain.context.json_root import build_json_root
from jsonpipe.infrastructure.observability.logging import context_logger

logger = structlog.get_logger(__name__)

ESC_DOLLAR_OPEN = "__ESC_DOLLAR_OPEN__"
ESC_DOLLAR = "__ESC_DOLLAR__"

_ESCAPED_OPEN_RE = re.compile(r"\\\$\{\{")
_ESCAPED_DOLLAR_RE = re.compile(r"\\\$")
_PLACEHOLDER_RE = re.compile(r"\$\{\{(.+?)\}\}", re.DOTALL)


def evaluate_placeholders(value: Any, entries: Optional[Iterable[Any]]) -> Any:
    """Rewrite every placeholder in ``value`` against a freshly built JSON root"""

    root = build_json_root(entries)
    return evaluate_with_root(value, root)


def evaluate_with_root(value: Any, root: List[Dict[str, Any]]) -> Any:
    """Recursively rewrite strings inside ``value``, keeping its shape"""

    if value is None:
        return None
    if isinstance(value, str):
        return _evaluate_string(value, root)
    if isinstance(value, (list, tuple)):
        return [evaluate_with_root(item, root) for item in value]
    if isinstance(value, Mapping):
        return {key: evaluate_with_root(item, root) for key, item in value.items()}
    return value


def _evaluate_string(value: str, root: List[Dict[str, Any]]) -> Any:
    text = _ESCAPED_OPEN_RE.sub(ESC_DOLLAR_OPEN, value)
    text = _ESCAPED_DOLLAR_RE.sub(ESC_DOLLAR, text)

    # A lone placeholder keeps the native type of its result
    trimmed = text.strip()
    matches = list(_PLACEHOLDER_RE.finditer(trimmed))
    if len(matches) == 1 and matches[0].span() == (0, len(trimmed)):
        expr = normalize_expr(matches[0].group(1))
        result = safe_eval(expr, root)
        context_logger.log_placeholder_evaluated(expr, result, whole_string=True)
        return result

    def replace(match: re.Match) -> str:
        expr = normalize_expr(match.group(1))
        result = safe_eval(expr, root)
        context_logger.log_placeholder_evaluated(expr, result, whole_string=False)
        return stringify(result)

    text = _PLACEHOLDER_RE.sub(replace, text)
    return text.replace(ESC_DOLLAR_OPEN, "${{").replace(ESC_DOLLAR, "$")


def stringify(result: Any) -> str:
    """Render a query result for inline substitution"""

    if result is None:
        return ""
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        return str(result)


def normalize_expr(expr: str) -> str:
    """Root a bare expression at the JSON root array.

    ``[0].x`` becomes ``$[0].x``. A bare key such as ``foo`` becomes
    ``$.foo``, which matches nothing on the root array and so yields ``[]``.
    """

    stripped = str(expr).strip()
    if stripped.startswith("$"):
        return stripped
    if stripped[:1].isalpha() or stripped[:1] == "_":
        return f"$.{stripped}"
    return f"${stripped}"


@lru_cache(maxsize=256)
def _compile(path: str):
    return parse_jsonpath(path)


def safe_eval(path: str, root: List[Dict[str, Any]]) -> Any:
    """Run a JSONPath query; one match is unwrapped, zero or many stay a list.

    Invalid expressions and engine errors give None.
    """

    try:
        matches = [match.value for match in _compile(path).find(root)]
    except Exception as e:
        logger.warning("JSONPath evaluation failed", expression=path, error=str(e))
        return None

    if len(matches) == 1:
        return matches[0]
    return matches
