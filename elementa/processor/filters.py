"""Inclusion rules evaluated against raw feed records.

Rules are combined with OR: a record passes as soon as one rule holds.
An empty rule set lets everything through.
"""

import re
from typing import Any, Dict, Iterable, Optional

from elementa.models.config import FilterRule
from elementa.models.data_models import FilterOperator
from elementa.monitoring.logger import StructuredLogger

_LEADING_NUMBER = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")


def _to_number(value: Any) -> float:
    """Loose numeric cast: leading number of the string, else 0.0."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    match = _LEADING_NUMBER.match(str(value))
    if not match:
        return 0.0
    return float(match.group(0))


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == "0" or value == 0


def _lower(value: Any) -> str:
    if value is None:
        return ""
    return str(value).lower()


def evaluate(operator: FilterOperator, actual: Any, expected: Any) -> bool:
    """Evaluate one operator against a record value."""
    if operator == FilterOperator.EQUALS:
        return _lower(actual) == _lower(expected)
    if operator == FilterOperator.NOT_EQUALS:
        return _lower(actual) != _lower(expected)
    if operator == FilterOperator.CONTAINS:
        return _lower(expected) in _lower(actual)
    if operator == FilterOperator.NOT_CONTAINS:
        return _lower(expected) not in _lower(actual)
    if operator == FilterOperator.GREATER_THAN:
        return _to_number(actual) > _to_number(expected)
    if operator == FilterOperator.LESS_THAN:
        return _to_number(actual) < _to_number(expected)
    if operator == FilterOperator.IS_EMPTY:
        return _is_empty(actual)
    if operator == FilterOperator.IS_NOT_EMPTY:
        return not _is_empty(actual)
    raise ValueError(f"Unhandled operator: {operator}")


class FilterService:
    """Evaluates connection filtering rules against raw records."""

    def __init__(self, logger: Optional[StructuredLogger] = None):
        self.logger = logger

    def _rule_parts(self, rule: Any):
        if isinstance(rule, FilterRule):
            return rule.field, rule.operator, rule.value
        rule = rule or {}
        return rule.get("field"), rule.get("operator"), rule.get("value")

    def passes(self, record: Dict[str, Any], rules: Optional[Iterable[Any]]) -> bool:
        """
        Return True if the record satisfies at least one rule.

        Rules without a field or operator, and rules whose field is absent
        from the record, are skipped rather than evaluated.

        Args:
            record: Raw feed record
            rules: FilterRule models or plain dicts with field/operator/value

        Returns:
            True when rules are empty or any rule holds
        """
        if not rules:
            return True

        for rule in rules:
            field, operator, value = self._rule_parts(rule)
            if not field or not operator or record.get(field) is None:
                continue

            if not isinstance(operator, FilterOperator):
                try:
                    operator = FilterOperator(operator)
                except ValueError:
                    if self.logger:
                        self.logger.warning("unknown_filter_operator", field=field, operator=operator)
                    continue

            if evaluate(operator, record[field], value):
                return True

        return False
