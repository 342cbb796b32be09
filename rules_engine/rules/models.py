"""
Condition tree and rule data models.
"""

import copy
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Union

from .errors import RuleValidationError


BOOLEAN_OPERATORS = ("all", "any")


class _Undefined:
    """Sentinel for a value that was never resolved or has no binding."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "UNDEFINED"

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __reduce__(self):
        return (_Undefined, ())


UNDEFINED = _Undefined()


def is_fact_reference(value: Any) -> bool:
    """Whether a condition value points at another fact instead of a literal."""
    return isinstance(value, dict) and "fact" in value


def _validate_priority(priority: Any, where: str) -> None:
    if priority is None:
        return
    if isinstance(priority, bool) or not isinstance(priority, (int, float)) or priority <= 0:
        raise RuleValidationError(
            f"{where} priority must be a positive number",
            details={"priority": priority}
        )


@dataclass
class Condition:
    """A node of a condition tree.

    Combinators have ``operator`` set to ``all`` or ``any`` and carry
    ``operands``. Leaves compare ``fact`` against ``value`` with a named
    operator. The ``result``, ``fact_result`` and ``value_result`` fields are
    annotations written by the evaluator.
    """
    operator: str
    fact: Optional[str] = None
    value: Any = None
    params: Optional[Dict[str, Any]] = None
    path: Optional[str] = None
    operands: List["Condition"] = field(default_factory=list)
    negate: bool = False
    priority: Optional[Union[int, float]] = None
    name: Optional[str] = None
    result: Optional[bool] = None
    fact_result: Any = UNDEFINED
    value_result: Any = UNDEFINED

    def is_boolean(self) -> bool:
        """Whether this node is an all/any combinator."""
        return self.operator in BOOLEAN_OPERATORS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        """Build a condition tree from JSON-shaped data."""
        if isinstance(data, Condition):
            return data
        if not isinstance(data, dict):
            raise RuleValidationError(
                "Condition must be an object",
                details={"condition": repr(data)}
            )

        priority = data.get("priority")
        _validate_priority(priority, "Condition")
        name = data.get("name")

        combinators = [key for key in BOOLEAN_OPERATORS if key in data]
        if len(combinators) > 1:
            raise RuleValidationError(
                "Condition cannot declare both 'all' and 'any'",
                details={"name": name}
            )

        if combinators:
            operator = combinators[0]
            operands = data[operator]
            if not isinstance(operands, list):
                raise RuleValidationError(
                    f"'{operator}' must be a list of conditions",
                    details={"name": name}
                )
            negate = data.get("not", False)
            if not isinstance(negate, bool):
                raise RuleValidationError(
                    "'not' must be a boolean",
                    details={"name": name}
                )
            return cls(
                operator=operator,
                operands=[cls.from_dict(operand) for operand in operands],
                negate=negate,
                priority=priority,
                name=name,
            )

        missing = [key for key in ("fact", "operator", "value") if key not in data]
        if missing:
            raise RuleValidationError(
                "Condition is missing required keys",
                details={"missing": missing, "name": name}
            )
        if data["operator"] in BOOLEAN_OPERATORS:
            raise RuleValidationError(
                f"'{data['operator']}' is reserved for combinators",
                details={"name": name}
            )

        params = data.get("params")
        if params is not None and not isinstance(params, dict):
            raise RuleValidationError(
                "'params' must be an object",
                details={"fact": data["fact"]}
            )

        return cls(
            operator=data["operator"],
            fact=data["fact"],
            value=data["value"],
            params=params,
            path=data.get("path"),
            priority=priority,
            name=name,
        )

    def to_json(self) -> Dict[str, Any]:
        """Serialize the node, including any evaluation annotations."""
        props: Dict[str, Any] = {}
        if self.priority is not None:
            props["priority"] = self.priority
        if self.name is not None:
            props["name"] = self.name

        if self.is_boolean():
            props[self.operator] = [operand.to_json() for operand in self.operands]
            props["operator"] = self.operator
            if self.negate:
                props["not"] = True
            if self.result is not None:
                props["result"] = self.result
            return props

        props["fact"] = self.fact
        props["operator"] = self.operator
        props["value"] = copy.deepcopy(self.value)
        if self.params is not None:
            props["params"] = copy.deepcopy(self.params)
        if self.path is not None:
            props["path"] = self.path
        if self.result is not None:
            # Facts resolved in tolerant mode serialize as null
            props["factResult"] = None if self.fact_result is UNDEFINED else copy.deepcopy(self.fact_result)
            if is_fact_reference(self.value):
                props["valueResult"] = None if self.value_result is UNDEFINED else copy.deepcopy(self.value_result)
            props["result"] = self.result
        return props


@dataclass
class Rule:
    """A condition tree plus the event and priority it carries."""
    conditions: Condition
    event: Any = None
    priority: Union[int, float] = 1
    name: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.conditions, dict):
            self.conditions = Condition.from_dict(self.conditions)
        if not isinstance(self.conditions, Condition) or not self.conditions.is_boolean():
            raise RuleValidationError(
                "Rule conditions root must be an 'all' or 'any' combinator",
                details={"name": self.name}
            )
        _validate_priority(self.priority, "Rule")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rule":
        """Build a rule from JSON-shaped data."""
        if not isinstance(data, dict):
            raise RuleValidationError("Rule must be an object")
        if "conditions" not in data:
            raise RuleValidationError(
                "Rule is missing 'conditions'",
                details={"name": data.get("name")}
            )
        return cls(
            conditions=Condition.from_dict(data["conditions"]),
            event=data.get("event"),
            priority=data.get("priority", 1),
            name=data.get("name"),
        )

    def identity(self) -> Dict[str, Any]:
        """Identity used to attribute failures and log lines to this rule."""
        return {"name": self.name}

    def to_json(self) -> Dict[str, Any]:
        """Serialize the rule."""
        props = {
            "conditions": self.conditions.to_json(),
            "event": self.event,
            "priority": self.priority,
        }
        if self.name is not None:
            props["name"] = self.name
        return props
