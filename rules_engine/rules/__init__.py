"""
Rules package.

Defines the condition tree model and the pieces that evaluate it:

- models: Condition tree and Rule data classes, parsed from JSON-shaped data.
- operators: Named comparators and their registry.
- facts: Fact bindings and the per-evaluation resolver with its cache.
- evaluator: Recursive tree evaluation with short-circuiting.
- result: RuleResult, the annotated snapshot of one evaluation.
- errors: Failure taxonomy with rule, fact and operator context.
"""

from .errors import (
    RuleValidationError, RuleEvaluationError, UndefinedFactError,
    UnknownOperatorError, FactResolutionError, OperatorExecutionError
)
from .models import Condition, Rule, UNDEFINED
from .operators import Operator, OperatorRegistry
from .facts import Fact, FactResolver
from .evaluator import TreeEvaluator
from .result import RuleResult

__all__ = [
    "Condition", "Rule", "UNDEFINED",
    "Operator", "OperatorRegistry",
    "Fact", "FactResolver",
    "TreeEvaluator", "RuleResult",
    "RuleValidationError", "RuleEvaluationError", "UndefinedFactError",
    "UnknownOperatorError", "FactResolutionError", "OperatorExecutionError",
]
