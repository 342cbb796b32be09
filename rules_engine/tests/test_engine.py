"""
Unit tests for the Engine evaluation entry point.
"""

import json
import pytest
from unittest.mock import MagicMock

from prometheus_client import CollectorRegistry

from rules_engine.engine import Engine
from rules_engine.rules.errors import (
    FactResolutionError, OperatorExecutionError, RuleValidationError,
    UndefinedFactError, UnknownOperatorError
)
from rules_engine.rules.facts import Fact
from rules_engine.rules.models import Rule
from rules_engine.rules.operators import OperatorRegistry
from rules_engine.rules.result import RuleResult
from shared.config import get_settings
from shared.logging import evaluation_id_var, reset_context, rule_name_var, set_evaluation_context
from shared.metrics import EngineMetrics, get_engine_metrics


class TestEngine:
    """Test cases for Engine."""

    @pytest.fixture
    def engine(self):
        """Create Engine instance."""
        return Engine(settings=get_settings(enable_metrics=False))

    @pytest.fixture
    def drinking_age_rule(self):
        """Rule matching adults."""
        return Rule.from_dict({
            "name": "drinking-age",
            "conditions": {
                "any": [{"fact": "age", "operator": "greaterThanInclusive", "value": 21}]
            },
            "event": {"type": "adult"},
            "priority": 1
        })

    def test_register_fact(self, engine):
        fact = engine.register_fact("age", 30)

        assert engine.facts["age"] is fact
        assert fact.is_constant() is True

    def test_register_fact_instance(self, engine):
        fact = Fact("age", lambda params, ctx: 30)

        assert engine.register_fact("age", fact) is fact

    def test_remove_fact(self, engine):
        engine.register_fact("age", 30)

        assert engine.remove_fact("age") is True
        assert engine.remove_fact("age") is False

    def test_register_and_remove_operator(self, engine):
        engine.register_operator("startsWith", lambda a, b: a.startswith(b))

        assert "startsWith" in engine.operators
        assert engine.remove_operator("startsWith") is True
        assert engine.remove_operator("startsWith") is False

    def test_empty_operator_registry_is_kept(self):
        """Test a caller-supplied empty registry is used as is."""
        registry = OperatorRegistry()
        engine = Engine(settings=get_settings(enable_metrics=False), operators=registry)

        engine.register_operator("custom", lambda a, b: a == b)

        assert engine.operators is registry
        assert registry.names() == ["custom"]

    @pytest.mark.asyncio
    async def test_empty_operator_registry_has_no_defaults(self):
        engine = Engine(settings=get_settings(enable_metrics=False), operators=OperatorRegistry(), facts={"age": 30})

        with pytest.raises(UnknownOperatorError):
            await engine.evaluate_rule({"conditions": {"all": [
                {"fact": "age", "operator": "equal", "value": 30}
            ]}})

    def test_default_metrics_are_shared(self):
        """Test engines built without a collector share the exported one."""
        engine = Engine(settings=get_settings(enable_metrics=True))

        assert engine.metrics is get_engine_metrics()

    def test_constructor_facts(self):
        engine = Engine(settings=get_settings(enable_metrics=False), facts={"age": 30})

        assert engine.facts["age"].value == 30

    def test_get_engine_stats(self, engine):
        engine.register_fact("age", 30)
        engine.register_fact("income", lambda params, ctx: 100)

        stats = engine.get_engine_stats()

        assert stats["total_facts"] == 2
        assert stats["constant_facts"] == 1
        assert stats["total_operators"] == 10
        assert stats["allow_undefined_facts"] is False

    @pytest.mark.asyncio
    async def test_evaluate_returns_rule_result(self, engine, drinking_age_rule):
        """Test annotation fidelity of the returned result."""
        engine.register_fact("age", 30)

        rule_result = await engine.evaluate(drinking_age_rule)

        assert isinstance(rule_result, RuleResult)
        assert rule_result.result is True
        assert rule_result.conditions.result is True
        data = rule_result.to_json()
        assert data["conditions"]["operator"] == "any"
        assert data["conditions"]["result"] is True
        assert data["conditions"]["any"][0]["factResult"] == 30
        assert data["conditions"]["any"][0]["result"] is True
        assert data["event"] == {"type": "adult"}
        assert data["name"] == "drinking-age"

    @pytest.mark.asyncio
    async def test_to_json_is_serializable(self, engine, drinking_age_rule):
        engine.register_fact("age", 30)

        rule_result = await engine.evaluate(drinking_age_rule)

        assert json.loads(json.dumps(rule_result.to_json()))["result"] is True

    @pytest.mark.asyncio
    async def test_evaluate_accepts_dict(self, engine):
        engine.register_fact("age", 18)

        result = await engine.evaluate_rule({
            "conditions": {"all": [{"fact": "age", "operator": "lessThan", "value": 21}]}
        })

        assert result is True

    @pytest.mark.asyncio
    async def test_evaluate_rejects_invalid_rule(self, engine):
        with pytest.raises(RuleValidationError):
            await engine.evaluate({"conditions": {"fact": "age", "operator": "equal", "value": 1}})

    @pytest.mark.asyncio
    async def test_caller_rule_not_mutated(self, engine, drinking_age_rule):
        """Test annotations are written to the captured copy only."""
        engine.register_fact("age", 30)

        await engine.evaluate(drinking_age_rule)

        assert drinking_age_rule.conditions.result is None
        assert drinking_age_rule.conditions.operands[0].result is None

    @pytest.mark.asyncio
    async def test_mutating_rule_after_evaluate(self, engine, drinking_age_rule):
        """Test a returned result is immune to later rule changes."""
        engine.register_fact("age", 30)
        rule_result = await engine.evaluate(drinking_age_rule)

        drinking_age_rule.event["type"] = "changed"
        drinking_age_rule.conditions.operands[0].value = 99

        assert rule_result.event == {"type": "adult"}
        assert rule_result.conditions.operands[0].value == 21

    @pytest.mark.asyncio
    async def test_mutating_serialized_result_keeps_engine_facts(self, engine):
        """Test changes to to_json() output never reach engine facts."""
        engine.register_fact("roles", ["user"])
        engine.register_fact("allowed", {"roles": ["user"]})
        rule_result = await engine.evaluate({"conditions": {"all": [
            {"fact": "roles", "operator": "contains", "value": "user"},
            {"fact": "roles", "operator": "equal", "value": {"fact": "allowed", "path": "$.roles"}},
        ]}})

        data = rule_result.to_json()
        data["conditions"]["all"][0]["factResult"].append("admin")
        data["conditions"]["all"][1]["valueResult"].append("admin")
        data["conditions"]["all"][1]["value"]["fact"] = "changed"

        assert engine.facts["roles"].value == ["user"]
        assert engine.facts["allowed"].value == {"roles": ["user"]}
        assert rule_result.conditions.operands[1].value == {"fact": "allowed", "path": "$.roles"}
        assert await engine.evaluate_rule({"conditions": {"all": [
            {"fact": "roles", "operator": "equal", "value": ["user"]}
        ]}}) is True

    @pytest.mark.asyncio
    async def test_mutating_engine_fact_after_evaluate(self, engine):
        """Test a returned result is immune to later engine fact changes."""
        engine.register_fact("roles", ["user"])
        engine.register_fact("allowed", ["user"])
        rule_result = await engine.evaluate({"conditions": {"all": [
            {"fact": "roles", "operator": "equal", "value": {"fact": "allowed"}},
        ]}})

        engine.facts["roles"].value.append("later")
        engine.facts["allowed"].value.append("later")

        assert rule_result.conditions.operands[0].fact_result == ["user"]
        assert rule_result.to_json()["conditions"]["all"][0]["factResult"] == ["user"]
        assert rule_result.to_json()["conditions"]["all"][0]["valueResult"] == ["user"]

    @pytest.mark.asyncio
    async def test_evaluation_keeps_outer_logging_context(self, engine, drinking_age_rule):
        """Test evaluate restores the caller's correlation context."""
        engine.register_fact("age", 30)
        _, tokens = set_evaluation_context(rule_name="outer", evaluation_id="outer-id")
        try:
            await engine.evaluate(drinking_age_rule)

            assert evaluation_id_var.get() == "outer-id"
            assert rule_name_var.get() == "outer"
        finally:
            reset_context(tokens)

        assert evaluation_id_var.get() is None
        assert rule_name_var.get() is None

    @pytest.mark.asyncio
    async def test_determinism(self, engine, drinking_age_rule):
        engine.register_fact("age", 30)

        first = await engine.evaluate(drinking_age_rule)
        second = await engine.evaluate(drinking_age_rule)

        assert first.to_json() == second.to_json()

    @pytest.mark.asyncio
    async def test_resolver_cache_is_per_evaluation(self, engine, drinking_age_rule):
        """Test each evaluation invokes the resolver afresh."""
        age = MagicMock(return_value=30)
        engine.register_fact("age", age)

        await engine.evaluate(drinking_age_rule)
        await engine.evaluate(drinking_age_rule)

        assert age.call_count == 2

    @pytest.mark.asyncio
    async def test_repeated_fact_resolved_once(self, engine):
        """Test one evaluation resolves a repeated fact only once."""
        age = MagicMock(return_value=30)
        engine.register_fact("age", age)

        result = await engine.evaluate_rule({"conditions": {"all": [
            {"fact": "age", "operator": "greaterThan", "value": 21},
            {"fact": "age", "operator": "lessThan", "value": 65},
        ]}})

        assert result is True
        assert age.call_count == 1

    @pytest.mark.asyncio
    async def test_undefined_fact_error_names_rule(self, engine, drinking_age_rule):
        with pytest.raises(UndefinedFactError) as exc_info:
            await engine.evaluate(drinking_age_rule)

        assert exc_info.value.rule == {"name": "drinking-age"}
        assert exc_info.value.fact == {"name": "age"}

    @pytest.mark.asyncio
    async def test_allow_undefined_facts(self, drinking_age_rule):
        engine = Engine(settings=get_settings(enable_metrics=False, allow_undefined_facts=True))

        rule_result = await engine.evaluate(drinking_age_rule)

        assert rule_result.result is False
        assert rule_result.to_json()["conditions"]["any"][0]["factResult"] is None

    @pytest.mark.asyncio
    async def test_unknown_operator_error_names_rule(self, engine):
        engine.register_fact("age", 30)
        rule = Rule.from_dict({
            "name": "bad-operator",
            "conditions": {"all": [{"fact": "age", "operator": "between", "value": [1, 2]}]}
        })

        with pytest.raises(UnknownOperatorError) as exc_info:
            await engine.evaluate(rule)

        assert exc_info.value.rule == {"name": "bad-operator"}
        assert exc_info.value.operator == {"name": "between"}
        assert exc_info.value.to_response().details["rule"] == {"name": "bad-operator"}

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, drinking_age_rule):
        registry = CollectorRegistry()
        engine = Engine(settings=get_settings(), metrics=EngineMetrics(registry=registry))
        engine.register_fact("age", 30)

        await engine.evaluate(drinking_age_rule)
        await engine.evaluate(drinking_age_rule, {"age": 10})

        assert registry.get_sample_value("rules_engine_rule_evaluations_total", {"result": "true"}) == 1.0
        assert registry.get_sample_value("rules_engine_rule_evaluations_total", {"result": "false"}) == 1.0
        assert registry.get_sample_value("rules_engine_rule_evaluation_duration_seconds_count") == 2.0

    @pytest.mark.asyncio
    async def test_error_metrics_recorded(self, drinking_age_rule):
        registry = CollectorRegistry()
        engine = Engine(settings=get_settings(), metrics=EngineMetrics(registry=registry))

        with pytest.raises(UndefinedFactError):
            await engine.evaluate(drinking_age_rule)

        assert registry.get_sample_value(
            "rules_engine_rule_evaluation_errors_total", {"error_code": "UNDEFINED_FACT"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_fact_error_is_not_downgraded(self, engine, drinking_age_rule):
        """Test resolver failures surface instead of becoming False."""
        engine.register_fact("age", MagicMock(side_effect=KeyError("age")))

        with pytest.raises(FactResolutionError):
            await engine.evaluate(drinking_age_rule)

    @pytest.mark.asyncio
    async def test_operator_error_is_not_downgraded(self, engine):
        engine.register_fact("tags", "oil")

        with pytest.raises(OperatorExecutionError):
            await engine.evaluate_rule({"conditions": {"all": [
                {"fact": "tags", "operator": "in", "value": 5}
            ]}})


class TestEngineSettings:
    """Test cases for environment-driven engine settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("RULES_ALLOW_UNDEFINED_FACTS", raising=False)

        settings = get_settings()

        assert settings.allow_undefined_facts is False
        assert settings.log_level == "info"

    @pytest.mark.asyncio
    async def test_tolerant_mode_from_environment(self, monkeypatch):
        monkeypatch.setenv("RULES_ALLOW_UNDEFINED_FACTS", "true")
        monkeypatch.setenv("RULES_ENABLE_METRICS", "false")
        engine = Engine()

        assert engine.metrics is None
        assert await engine.evaluate_rule({"conditions": {"any": [
            {"fact": "missing", "operator": "equal", "value": 1}
        ]}}) is False


class TestCreateEngine:
    """Test cases for the engine factory."""

    @pytest.mark.asyncio
    async def test_create_engine(self):
        from rules_engine.engine import create_engine

        engine = create_engine(get_settings(enable_metrics=False, log_level="warning"), facts={"age": 30})

        assert engine.settings.log_level == "warning"
        assert await engine.evaluate_rule({"conditions": {"all": [
            {"fact": "age", "operator": "equal", "value": 30}
        ]}}) is True
