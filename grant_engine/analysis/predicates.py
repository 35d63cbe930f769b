"""
Trusted interpreter for declarative compliance predicates.

Only the closed set of predicate kinds is understood (pattern, presence,
absence, numeric_bound). Rule definitions are data: regexes are compiled when
the rule set is loaded and nothing in a rule is ever executed.
"""

import re
import logging
from dataclasses import fields, is_dataclass
from typing import Any, List, Tuple

from grant_engine.core.domain_models import ApplicationContent, Measure, Predicate, PredicateKind
from grant_engine.core.money import parse_amount
from grant_engine.core.utils import word_count

logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self):
        return "<missing>"


MISSING = _Missing()


def _key(name: str) -> str:
    return re.sub(r"[\s_\-]+", "", str(name)).lower()


def _lookup(current: Any, segment: str) -> Any:
    if isinstance(current, dict):
        if segment in current:
            return current[segment]
        wanted = _key(segment)
        for key, value in current.items():
            if _key(key) == wanted:
                return value
        return MISSING

    if is_dataclass(current):
        wanted = _key(segment)
        for f in fields(current):
            if _key(f.name) == wanted:
                return getattr(current, f.name)
        return MISSING

    return MISSING


def resolve_path(content: ApplicationContent, path: str) -> Any:
    """
    Resolve a dotted path against application content.

    Segments applied to a list map over its items, so
    "budget.categories.justification" yields one value per budget line.
    Items lacking the key stay in the list as MISSING.

    Returns:
        The value, or MISSING
    """
    root = {
        "text": content.text,
        "sections": content.sections,
        "budget": content.budget,
        "attachments": content.attachments,
        "fields": content.fields,
        "applicationId": content.application_id,
    }

    current: Any = root
    for segment in [s for s in path.split(".") if s]:
        if current is MISSING or current is None:
            return MISSING
        if isinstance(current, (list, tuple)):
            current = [MISSING if item is MISSING else _lookup(item, segment) for item in current]
        else:
            current = _lookup(current, segment)
    return MISSING if current is None else current


def _is_empty(value: Any) -> bool:
    if value is MISSING or value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _as_text(value: Any) -> str:
    if value is MISSING or value is None:
        return ""
    if isinstance(value, dict):
        return "\n\n".join(_as_text(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return "\n".join(_as_text(v) for v in value)
    return str(value)


def _as_number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    try:
        return float(text.replace(",", ""))
    except ValueError:
        amount = parse_amount(text)[1]
        if amount is None:
            raise ValueError(f"not a number: {text!r}")
        return float(amount)


def measure_values(value: Any, measure: Measure) -> List[float]:
    """
    Apply a measure. VALUE over a list yields one number per item; the
    other measures reduce the whole value to a single number.
    """
    if measure == Measure.WORD_COUNT:
        return [float(word_count(_as_text(value)))]
    if measure == Measure.CHAR_COUNT:
        return [float(len(_as_text(value).strip()))]
    if measure == Measure.ITEM_COUNT:
        if isinstance(value, (list, tuple)):
            return [float(sum(1 for v in value if v is not MISSING))]
        if isinstance(value, (dict, set)):
            return [float(len(value))]
        return [0.0 if _is_empty(value) else 1.0]
    if isinstance(value, (list, tuple)):
        return [_as_number(v) for v in value]
    return [_as_number(value)]


def _fmt(number: float) -> str:
    return f"{number:,.0f}" if float(number).is_integer() else f"{number:,.2f}"


def evaluate_predicate(predicate: Predicate, content: ApplicationContent) -> Tuple[bool, str]:
    """
    Evaluate one predicate.

    Returns:
        (satisfied, detail)
    """
    label = predicate.description or predicate.path
    value = resolve_path(content, predicate.path)

    if predicate.kind == PredicateKind.PRESENCE:
        if isinstance(value, (list, tuple)) and value:
            missing = sum(1 for v in value if _is_empty(v))
            if missing:
                return False, f"{label}: {missing} of {len(value)} item(s) empty"
            return True, f"{label}: present"
        if _is_empty(value):
            return False, f"{label}: missing"
        return True, f"{label}: present"

    if predicate.kind == PredicateKind.ABSENCE:
        if predicate.compiled is not None:
            match = predicate.compiled.search(_as_text(value))
            if match:
                return False, f"{label}: found '{match.group(0)[:40]}'"
            return True, f"{label}: not found"
        if isinstance(value, (list, tuple)):
            present = [v for v in value if not _is_empty(v)]
            if present:
                return False, f"{label}: {len(present)} item(s) present"
            return True, f"{label}: absent"
        if _is_empty(value):
            return True, f"{label}: absent"
        return False, f"{label}: present"

    if predicate.kind == PredicateKind.PATTERN:
        if value is MISSING:
            return False, f"{label}: missing"
        if predicate.compiled.search(_as_text(value)):
            return True, f"{label}: matched"
        return False, f"{label}: no match for /{predicate.pattern}/"

    if predicate.kind == PredicateKind.NUMERIC_BOUND:
        if value is MISSING and predicate.measure == Measure.VALUE:
            return False, f"{label}: missing"
        if isinstance(value, (list, tuple)) and predicate.measure == Measure.VALUE:
            absent = sum(1 for v in value if v is MISSING or v is None)
            if absent:
                return False, f"{label}: {absent} of {len(value)} item(s) missing"
        try:
            numbers = measure_values(value, predicate.measure)
        except ValueError as e:
            return False, f"{label}: {e}"
        if not numbers:
            return False, f"{label}: nothing to measure"

        unit = "" if predicate.measure == Measure.VALUE else f" {predicate.measure.value.replace('_', ' ')}"
        for number in numbers:
            if predicate.minimum is not None and number < predicate.minimum:
                return False, f"{label}: {_fmt(number)}{unit} below minimum {_fmt(predicate.minimum)}"
            if predicate.maximum is not None and number > predicate.maximum:
                return False, f"{label}: {_fmt(number)}{unit} above maximum {_fmt(predicate.maximum)}"
        shown = _fmt(numbers[0]) if len(numbers) == 1 else f"{len(numbers)} values"
        return True, f"{label}: {shown}{unit} within bounds"

    # Unreachable for well-formed predicates; PredicateKind is closed
    logger.warning(f"Unknown predicate kind {predicate.kind!r}")
    return False, f"{label}: unsupported predicate"
