"""Custom menu conditions: user properties, date ranges, named predicates.

A condition list is evaluated in order and every entry must pass. Condition
shapes:

* ``{"type": "user_property", "value": "profile.department", "operator": "=", "expected": "sales"}``
* ``{"type": "date_range", "start": "2024-01-01", "end": "2024-12-31"}``
* ``{"type": "custom_predicate", "value": "is_beta_tester"}``

Unknown operators compare for equality. That fallback is kept on purpose
for compatibility with stored conditions; see DESIGN.md.
"""

import logging
from datetime import date, datetime
from typing import Any, Callable

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from django.utils.module_loading import import_string

from .conf import access_settings
from .principal import Principal

logger = logging.getLogger(__name__)

_predicates: dict[str, Callable[[Principal], bool]] = {}

CONDITION_TYPES = ("user_property", "date_range", "custom_predicate", "custom_callback")


class MalformedCondition(ValueError):
    """A stored condition cannot be interpreted."""


def register_predicate(name: str):
    """Decorator registering a ``custom_predicate`` callable under ``name``."""

    def decorator(func: Callable[[Principal], bool]):
        _predicates[name] = func
        return func

    return decorator


def unregister_predicate(name: str) -> None:
    _predicates.pop(name, None)


def get_predicate(name: str) -> Callable[[Principal], bool]:
    if name in _predicates:
        return _predicates[name]
    configured = access_settings.CONDITION_PREDICATES.get(name)
    if configured:
        try:
            return import_string(configured)
        except ImportError as exc:
            raise MalformedCondition(f"Cannot import predicate {name}: {exc}") from exc
    raise MalformedCondition(f"Unknown predicate: {name}")


def compare_values(actual: Any, expected: Any, operator: str) -> bool:
    """Apply ``operator`` with Python's natural ordering and equality."""
    try:
        if operator in ("=", "=="):
            return actual == expected
        if operator == "!=":
            return actual != expected
        if operator == ">":
            return actual > expected
        if operator == ">=":
            return actual >= expected
        if operator == "<":
            return actual < expected
        if operator == "<=":
            return actual <= expected
        if operator == "in":
            return actual in _as_collection(expected)
        if operator == "not_in":
            return actual not in _as_collection(expected)
        if operator == "contains":
            return str(expected) in str(actual)
        if operator == "starts_with":
            return str(actual).startswith(str(expected))
        if operator == "ends_with":
            return str(actual).endswith(str(expected))
    except TypeError:
        # Incomparable operands, e.g. None > 3.
        return False
    return actual == expected


def _as_collection(value) -> list | tuple | set | frozenset:
    if isinstance(value, (list, tuple, set, frozenset)):
        return value
    return [value]


def lookup_path(source: Any, path: str) -> Any:
    """Resolve a dotted path through dicts and object attributes."""
    current = source
    for part in str(path).split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(part)
        else:
            current = getattr(current, part, None)
    return current


def _parse_bound(value, field: str) -> datetime | date | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value if timezone.is_aware(value) else timezone.make_aware(value)
    if isinstance(value, date):
        return value
    text = str(value)
    parsed_dt = parse_datetime(text)
    if parsed_dt is not None:
        return parsed_dt if timezone.is_aware(parsed_dt) else timezone.make_aware(parsed_dt)
    parsed_date = parse_date(text)
    if parsed_date is not None:
        return parsed_date
    raise MalformedCondition(f"Invalid {field} date: {value!r}")


def _within_range(now: datetime, start, end) -> bool:
    # Date-only bounds cover the whole day.
    if isinstance(start, datetime):
        if now < start:
            return False
    elif isinstance(start, date) and timezone.localdate(now) < start:
        return False
    if isinstance(end, datetime):
        if now > end:
            return False
    elif isinstance(end, date) and timezone.localdate(now) > end:
        return False
    return True


def evaluate_condition(condition: dict, principal: Principal, now: datetime) -> bool:
    if not isinstance(condition, dict):
        raise MalformedCondition(f"Condition must be an object, got {condition!r}")
    kind = condition.get("type")
    if kind == "user_property":
        path = condition.get("value")
        if not path:
            raise MalformedCondition("user_property condition requires a value path")
        actual = lookup_path(principal.attributes, path)
        return compare_values(actual, condition.get("expected"), condition.get("operator", "="))
    if kind == "date_range":
        start = _parse_bound(condition.get("start"), "start")
        end = _parse_bound(condition.get("end"), "end")
        return _within_range(now, start, end)
    if kind in ("custom_predicate", "custom_callback"):
        name = condition.get("value") or condition.get("name")
        if not name:
            raise MalformedCondition("custom_predicate condition requires a predicate name")
        return bool(get_predicate(name)(principal))
    raise MalformedCondition(f"Unknown condition type: {kind!r}")


def evaluate_conditions(conditions, principal: Principal, now: datetime | None = None) -> bool:
    """True when every condition passes; raises MalformedCondition on bad data."""
    if not conditions:
        return True
    if not isinstance(conditions, list):
        raise MalformedCondition("Conditions must be a list")
    now = now or timezone.now()
    for condition in conditions:
        if not evaluate_condition(condition, principal, now):
            logger.debug("Condition %s failed for principal %s", condition, principal.id)
            return False
    return True


__all__ = [
    "CONDITION_TYPES",
    "MalformedCondition",
    "register_predicate",
    "unregister_predicate",
    "compare_values",
    "lookup_path",
    "evaluate_condition",
    "evaluate_conditions",
]
