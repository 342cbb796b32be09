"""
Rule evaluation core.

Evaluates JSON-shaped boolean rules against named facts and returns a
``RuleResult``: the boolean outcome plus an annotated copy of the condition
tree showing the resolved fact value and result at every evaluated node.

- engine: Engine holding engine-level facts and operators; the evaluation
  entry point.
- rules: Condition model, operator registry, fact resolution, tree
  evaluation, result capture and the error taxonomy.

Guidelines:
- Evaluations never mutate engine state or the caller's rule.
- Errors carry the rule, fact or operator that caused them and are never
  downgraded to a False result.
"""

from .engine import Engine, create_engine
from .rules import (
    Condition, Rule, RuleResult, Fact, Operator, OperatorRegistry, UNDEFINED,
    RuleValidationError, RuleEvaluationError, UndefinedFactError,
    UnknownOperatorError, FactResolutionError, OperatorExecutionError
)

__all__ = [
    "Engine", "create_engine",
    "Condition", "Rule", "RuleResult", "Fact", "Operator", "OperatorRegistry", "UNDEFINED",
    "RuleValidationError", "RuleEvaluationError", "UndefinedFactError",
    "UnknownOperatorError", "FactResolutionError", "OperatorExecutionError",
]
