"""
Rule evaluation engine.
"""

import time
from typing import Dict, Any, Optional, Mapping, Union

from shared.config import EngineSettings, get_settings
from shared.logging import configure_logging, get_logger, set_evaluation_context, reset_context
from shared.metrics import EngineMetrics, get_engine_metrics
from .rules.errors import RuleEvaluationError
from .rules.evaluator import TreeEvaluator
from .rules.facts import Fact, FactResolver
from .rules.models import Rule
from .rules.operators import Comparator, Operator, OperatorRegistry
from .rules.result import RuleResult


class Engine:
    """Holds engine-level facts and operators and evaluates rules against them.

    Engine state is only read during an evaluation. Each call to
    ``evaluate`` gets its own fact resolver, so concurrent evaluations with
    different call-scoped facts never observe each other.
    """

    def __init__(self,
                 settings: Optional[EngineSettings] = None,
                 operators: Optional[OperatorRegistry] = None,
                 facts: Optional[Mapping[str, Any]] = None,
                 metrics: Optional[EngineMetrics] = None):
        self.logger = get_logger("rules_engine.engine")
        self.settings = settings if settings is not None else get_settings()
        self.operators = operators if operators is not None else OperatorRegistry.with_defaults()
        self.facts: Dict[str, Fact] = {}
        if metrics is None and self.settings.enable_metrics:
            metrics = get_engine_metrics()
        self.metrics = metrics
        self.evaluator = TreeEvaluator(self.operators)

        for name, value in (facts or {}).items():
            self.register_fact(name, value)

    def register_fact(self, name: str, value_or_resolver: Any, priority: Optional[int] = None) -> Fact:
        """Add or replace an engine-level fact."""
        if isinstance(value_or_resolver, Fact):
            fact = value_or_resolver
        else:
            fact = Fact(name, value_or_resolver, priority=priority)
        self.facts[name] = fact
        self.logger.info("Fact registered", fact=name, constant=fact.is_constant())
        return fact

    def remove_fact(self, name: str) -> bool:
        """Remove an engine-level fact."""
        if name in self.facts:
            del self.facts[name]
            self.logger.info("Fact removed", fact=name)
            return True
        return False

    def register_operator(self, name_or_operator: Union[str, Operator],
                          comparator: Optional[Comparator] = None) -> Operator:
        """Add or replace an operator."""
        operator = self.operators.add(name_or_operator, comparator)
        self.logger.info("Operator registered", operator=operator.name)
        return operator

    def remove_operator(self, name: str) -> bool:
        """Remove an operator."""
        removed = self.operators.remove(name)
        if removed:
            self.logger.info("Operator removed", operator=name)
        return removed

    async def evaluate(self, rule: Union[Rule, Dict[str, Any]],
                       override_facts: Optional[Mapping[str, Any]] = None) -> RuleResult:
        """Evaluate a rule, optionally shadowing engine facts for this call only."""
        if not isinstance(rule, Rule):
            rule = Rule.from_dict(rule)

        start_time = time.time()
        _, context_tokens = set_evaluation_context(rule_name=rule.name)
        try:
            rule_result = RuleResult(rule.conditions, rule.event, rule.priority, rule.name)
            resolver = FactResolver(
                self.facts,
                override_facts,
                allow_undefined_facts=self.settings.allow_undefined_facts,
                metrics=self.metrics
            )

            try:
                outcome = await self.evaluator.evaluate(rule_result.conditions, resolver)
            except RuleEvaluationError as e:
                e.with_rule(rule.identity())
                if self.metrics is not None:
                    self.metrics.record_error(e.code)
                self.logger.warning(
                    "Rule evaluation failed",
                    code=e.code,
                    error=e.message,
                    details=e.details
                )
                raise
            finally:
                abandoned = resolver.cancel_pending()
                if abandoned:
                    self.logger.debug("Abandoned in-flight fact resolutions", count=abandoned)

            rule_result.set_result(outcome)
            duration = time.time() - start_time
            if self.metrics is not None:
                self.metrics.record_evaluation(outcome, duration)
            self.logger.debug(
                "Rule evaluated",
                result=outcome,
                evaluation_time_ms=duration * 1000
            )
            return rule_result
        finally:
            reset_context(context_tokens)

    async def evaluate_rule(self, rule: Union[Rule, Dict[str, Any]],
                            override_facts: Optional[Mapping[str, Any]] = None) -> bool:
        """Evaluate a rule and return only its boolean outcome."""
        rule_result = await self.evaluate(rule, override_facts)
        return rule_result.result

    def get_engine_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        return {
            "total_facts": len(self.facts),
            "constant_facts": len([f for f in self.facts.values() if f.is_constant()]),
            "total_operators": len(self.operators),
            "allow_undefined_facts": self.settings.allow_undefined_facts,
        }


def create_engine(settings: Optional[EngineSettings] = None, **kwargs) -> Engine:
    """Build an engine from settings and configure structured logging for it."""
    settings = settings if settings is not None else get_settings()
    configure_logging("rules_engine", settings.log_level)
    return Engine(settings=settings, **kwargs)
