"""
Recursive condition tree evaluation.

The evaluator walks a condition tree, resolving facts through a
``FactResolver`` and comparing them with operators from an
``OperatorRegistry``. Every node it visits is annotated in place with its
``result`` (and ``fact_result`` for leaves). Operands skipped by
short-circuiting are left unannotated.
"""

import asyncio
import copy
from itertools import groupby
from typing import List, Optional

from shared.logging import get_logger
from .errors import OperatorExecutionError
from .facts import FactResolver
from .models import Condition, is_fact_reference
from .operators import OperatorRegistry


DEFAULT_CONDITION_PRIORITY = 1


class TreeEvaluator:
    """Evaluates condition trees against one evaluation's facts."""

    def __init__(self, operators: OperatorRegistry):
        self.operators = operators
        self.logger = get_logger("rules_engine.evaluator")

    async def evaluate(self, node: Condition, resolver: FactResolver) -> bool:
        """Evaluate ``node`` and store its boolean outcome on it."""
        if node.is_boolean():
            outcome = await self._evaluate_combinator(node, resolver)
            if node.negate:
                outcome = not outcome
        else:
            outcome = await self._evaluate_leaf(node, resolver)
        node.result = outcome
        return outcome

    async def _evaluate_leaf(self, node: Condition, resolver: FactResolver) -> bool:
        fact_value = await resolver.resolve_path(node.fact, node.params, node.path)
        node.fact_result = copy.deepcopy(fact_value)

        value = node.value
        if is_fact_reference(value):
            value = await resolver.resolve_path(value["fact"], value.get("params"), value.get("path"))
            node.value_result = copy.deepcopy(value)

        operator = self.operators.get(node.operator)
        try:
            outcome = operator.evaluate(fact_value, value)
        except Exception as exc:
            raise OperatorExecutionError(operator.name, exc) from exc

        self.logger.debug(
            "Condition evaluated",
            fact=node.fact,
            operator=node.operator,
            value=value,
            fact_result=fact_value,
            result=outcome
        )
        return outcome

    async def _evaluate_combinator(self, node: Condition, resolver: FactResolver) -> bool:
        # all: stop at the first False. any: stop at the first True.
        short_circuit_on = node.operator == "any"
        for batch in self._batches(node.operands, resolver):
            outcomes = await self._evaluate_batch(batch, resolver)
            if short_circuit_on in outcomes:
                return short_circuit_on
        # Exhausted: True for all (vacuously so when empty), False for any
        return not short_circuit_on

    @staticmethod
    def _declared_priority(operand: Condition, resolver: FactResolver) -> Optional[float]:
        """Explicit condition priority, else the priority of the fact a leaf tests."""
        if operand.priority is not None:
            return operand.priority
        if not operand.is_boolean():
            fact = resolver.get_fact(operand.fact)
            if fact is not None:
                return fact.priority
        return None

    def _batches(self, operands: List[Condition], resolver: FactResolver) -> List[List[Condition]]:
        """Split operands into the groups that run together.

        Without declared priorities every operand is its own batch, in listed
        order. Once any operand declares a priority, operands are ordered by
        descending priority and operands of equal priority share a batch.
        """
        declared = [self._declared_priority(operand, resolver) for operand in operands]
        if all(priority is None for priority in declared):
            return [[operand] for operand in operands]

        priorities = [
            DEFAULT_CONDITION_PRIORITY if priority is None else priority for priority in declared
        ]
        # Stable sort keeps listed order within a priority
        ordered = sorted(zip(priorities, range(len(operands))), key=lambda pair: pair[0], reverse=True)
        return [
            [operands[index] for _, index in group]
            for _, group in groupby(ordered, key=lambda pair: pair[0])
        ]

    async def _evaluate_batch(self, batch: List[Condition], resolver: FactResolver) -> List[bool]:
        if len(batch) == 1:
            return [await self.evaluate(batch[0], resolver)]

        tasks = [asyncio.ensure_future(self.evaluate(operand, resolver)) for operand in batch]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        failed = [task for task in tasks if task in done and task.exception() is not None]
        if failed:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.wait(pending)
            # First failure in listed order wins
            raise failed[0].exception()
        return [task.result() for task in tasks]
