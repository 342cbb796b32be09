"""
Operator registry.

Operators are named binary predicates applied to a resolved fact value and a
condition's value. The registry is read-only from the evaluator's point of
view; registration happens on the engine.
"""

import numbers
from typing import Any, Callable, Dict, List, Optional, Union

from .errors import UnknownOperatorError


Comparator = Callable[[Any, Any], Any]
FactValueValidator = Callable[[Any], bool]


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Number) and not isinstance(value, bool)


def _is_container(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset, str))


class Operator:
    """A named comparator with an optional fact value guard."""

    def __init__(self, name: str, callback: Comparator,
                 fact_value_validator: Optional[FactValueValidator] = None):
        if not name:
            raise ValueError("Operator name is required")
        if not callable(callback):
            raise TypeError(f"Operator '{name}' callback must be callable")
        self.name = name
        self.callback = callback
        self.fact_value_validator = fact_value_validator or (lambda value: True)

    def evaluate(self, fact_value: Any, value: Any) -> bool:
        """Apply the comparator; fact values the guard rejects never match."""
        if not self.fact_value_validator(fact_value):
            return False
        return bool(self.callback(fact_value, value))

    def __repr__(self):
        return f"Operator({self.name!r})"


DEFAULT_OPERATORS: List[Operator] = [
    Operator("equal", lambda a, b: a == b),
    Operator("notEqual", lambda a, b: a != b),
    Operator("in", lambda a, b: a in b),
    Operator("notIn", lambda a, b: a not in b),
    Operator("contains", lambda a, b: b in a, _is_container),
    Operator("doesNotContain", lambda a, b: b not in a, _is_container),
    Operator("lessThan", lambda a, b: a < b, _is_number),
    Operator("lessThanInclusive", lambda a, b: a <= b, _is_number),
    Operator("greaterThan", lambda a, b: a > b, _is_number),
    Operator("greaterThanInclusive", lambda a, b: a >= b, _is_number),
]


class OperatorRegistry:
    """Maps operator names to comparators."""

    def __init__(self, operators: Optional[List[Operator]] = None):
        self._operators: Dict[str, Operator] = {}
        for operator in operators or []:
            self.add(operator)

    @classmethod
    def with_defaults(cls) -> "OperatorRegistry":
        """Registry preloaded with the standard comparator set."""
        return cls(DEFAULT_OPERATORS)

    def add(self, operator_or_name: Union[Operator, str], callback: Optional[Comparator] = None) -> Operator:
        """Register an operator, replacing any operator with the same name."""
        if isinstance(operator_or_name, Operator):
            operator = operator_or_name
        else:
            operator = Operator(operator_or_name, callback)
        self._operators[operator.name] = operator
        return operator

    def remove(self, name: str) -> bool:
        """Remove an operator by name."""
        return self._operators.pop(name, None) is not None

    def get(self, name: str) -> Operator:
        """Look up an operator, failing with UnknownOperatorError when absent."""
        operator = self._operators.get(name)
        if operator is None:
            raise UnknownOperatorError(name)
        return operator

    def names(self) -> List[str]:
        """Registered operator names."""
        return list(self._operators)

    def __contains__(self, name: str) -> bool:
        return name in self._operators

    def __len__(self) -> int:
        return len(self._operators)
