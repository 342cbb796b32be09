"""
Captured outcome of evaluating one rule once.
"""

import copy
from typing import Dict, Any, Optional, Union

from shared.errors import RulesEngineException
from .models import Condition


class RuleResult:
    """Snapshot of a rule's conditions, event and priority plus the outcome.

    All inputs are deep-copied on construction, so later changes to the
    caller's rule never reach a stored result. The evaluator annotates the
    copied ``conditions`` tree during the evaluation pass.
    """

    def __init__(self, conditions: Condition, event: Any, priority: Union[int, float],
                 name: Optional[str] = None):
        self.conditions = copy.deepcopy(conditions)
        self.event = copy.deepcopy(event)
        self.priority = copy.deepcopy(priority)
        self.name = name
        self.result: Optional[bool] = None

    def set_result(self, result: bool) -> None:
        """Record the outcome on the result and on the root condition."""
        if self.result is not None:
            raise RulesEngineException(
                "RESULT_ALREADY_SET",
                "Rule result has already been set",
                {"name": self.name}
            )
        self.result = result
        self.conditions.result = result

    def to_json(self) -> Dict[str, Any]:
        """Plain data form of the result."""
        props = {
            "conditions": self.conditions.to_json(),
            "event": copy.deepcopy(self.event),
            "priority": self.priority,
            "result": self.result,
        }
        if self.name is not None:
            props["name"] = self.name
        return props

    def __repr__(self):
        return f"RuleResult(name={self.name!r}, result={self.result!r})"
