"""
Error taxonomy for rule evaluation.

Every failure raised while evaluating a rule is a ``RuleEvaluationError``
carrying structured context: the owning rule, and the fact or operator that
faulted. The engine attaches the rule identity at the evaluation boundary;
the fact and operator context is attached where the failure happens.
"""

from typing import Any, Dict, Optional

from shared.errors import RulesEngineException, ValidationError


class RuleValidationError(ValidationError):
    """Raised when JSON-shaped rule data does not describe a valid rule."""

    def __init__(self, message: str = "Invalid rule", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = "RULE_VALIDATION_ERROR"


class RuleEvaluationError(RulesEngineException):
    """Base class for failures surfaced while evaluating a rule."""

    def __init__(self, code: str, message: str,
                 fact: Optional[str] = None,
                 operator: Optional[str] = None,
                 rule: Optional[Dict[str, Any]] = None):
        self.fact = {"name": fact} if fact is not None else None
        self.operator = {"name": operator} if operator is not None else None
        self.rule = rule
        super().__init__(code, message, self._context())

    def _context(self) -> Dict[str, Any]:
        details: Dict[str, Any] = {}
        if self.rule is not None:
            details["rule"] = self.rule
        if self.fact is not None:
            details["fact"] = self.fact
        if self.operator is not None:
            details["operator"] = self.operator
        return details

    def with_rule(self, rule: Dict[str, Any]) -> "RuleEvaluationError":
        """Attach the owning rule's identity, keeping any existing one."""
        if self.rule is None:
            self.rule = dict(rule)
            self.details = self._context()
        return self


class UndefinedFactError(RuleEvaluationError):
    """A condition references a fact with no binding."""

    def __init__(self, fact: str):
        super().__init__("UNDEFINED_FACT", f"Undefined fact: {fact}", fact=fact)


class UnknownOperatorError(RuleEvaluationError):
    """A condition references an operator missing from the registry."""

    def __init__(self, operator: str):
        super().__init__("UNKNOWN_OPERATOR", f"Unknown operator: {operator}", operator=operator)


class FactResolutionError(RuleEvaluationError):
    """A fact resolver raised. The original exception is the ``__cause__``."""

    def __init__(self, fact: str, cause: BaseException):
        super().__init__("FACT_RESOLUTION_ERROR", str(cause) or type(cause).__name__, fact=fact)
        self.__cause__ = cause


class OperatorExecutionError(RuleEvaluationError):
    """An operator comparator raised. The original exception is the ``__cause__``."""

    def __init__(self, operator: str, cause: BaseException):
        super().__init__("OPERATOR_EXECUTION_ERROR", str(cause) or type(cause).__name__, operator=operator)
        self.__cause__ = cause
