"""
Fact bindings and per-evaluation fact resolution.

A ``FactResolver`` is built fresh for every evaluation. It layers the
call-scoped facts supplied with that evaluation over the engine-level facts
and memoizes resolver invocations by ``(fact name, normalized params)``.
Concurrent requests for the same key await one shared task, so a resolver
runs at most once per key per evaluation.
"""

import asyncio
import inspect
import json
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from shared.logging import get_logger
from shared.metrics import EngineMetrics
from .errors import FactResolutionError, RuleEvaluationError, UndefinedFactError
from .models import UNDEFINED


PATH_TOKEN = re.compile(r"[^.\[\]]+")


class Fact:
    """A named fact: either a constant value or a resolver function.

    Resolvers are called as ``resolver(params, resolver_context)`` and may
    return a value or an awaitable. ``priority`` is the default priority of
    conditions that test this fact.
    """

    def __init__(self, name: str, value_or_resolver: Any, priority: Optional[int] = None):
        if not name:
            raise ValueError("Fact name is required")
        self.name = name
        self.priority = priority
        if callable(value_or_resolver):
            self.resolver: Optional[Callable[..., Any]] = value_or_resolver
            self.value = UNDEFINED
        else:
            self.resolver = None
            self.value = value_or_resolver

    def is_constant(self) -> bool:
        return self.resolver is None

    async def calculate(self, params: Dict[str, Any], context: "FactResolver") -> Any:
        if self.resolver is None:
            return self.value
        value = self.resolver(params, context)
        if inspect.isawaitable(value):
            value = await value
        return value

    def __repr__(self):
        return f"Fact({self.name!r})"


def as_fact(name: str, value_or_fact: Any) -> Fact:
    """Wrap a literal or resolver into a Fact; Fact instances pass through."""
    if isinstance(value_or_fact, Fact):
        return value_or_fact
    return Fact(name, value_or_fact)


def select_path(value: Any, path: Optional[str]) -> Any:
    """Select a nested value with a dotted path such as ``$.account.tags[0]``."""
    if not path:
        return value
    for token in PATH_TOKEN.findall(path):
        if token == "$":
            continue
        if isinstance(value, Mapping):
            if token not in value:
                return UNDEFINED
            value = value[token]
        elif isinstance(value, (list, tuple)) and token.lstrip("-").isdigit():
            index = int(token)
            if not -len(value) <= index < len(value):
                return UNDEFINED
            value = value[index]
        else:
            return UNDEFINED
    return value


class FactResolver:
    """Resolves facts for one evaluation."""

    def __init__(self,
                 engine_facts: Mapping[str, Fact],
                 override_facts: Optional[Mapping[str, Any]] = None,
                 allow_undefined_facts: bool = False,
                 metrics: Optional[EngineMetrics] = None):
        self.logger = get_logger("rules_engine.facts")
        self.allow_undefined_facts = allow_undefined_facts
        self.metrics = metrics
        self._engine_facts = engine_facts
        self._runtime_facts: Dict[str, Fact] = {}
        self._cache: Dict[Tuple[str, str], "asyncio.Future[Any]"] = {}
        # Resolutions dropped from the cache by a rebinding, possibly still in flight
        self._superseded: List["asyncio.Future[Any]"] = []

        for name, value in (override_facts or {}).items():
            self.add_runtime_fact(name, value)

    def add_runtime_fact(self, name: str, value_or_resolver: Any) -> Fact:
        """Add a call-scoped fact that shadows any engine fact of the same name."""
        fact = as_fact(name, value_or_resolver)
        self._runtime_facts[name] = fact
        # A new binding invalidates anything resolved under the old one
        for key in [key for key in self._cache if key[0] == name]:
            self._superseded.append(self._cache.pop(key))
        return fact

    def get_fact(self, name: str) -> Optional[Fact]:
        """Call-scoped binding first, then engine-level binding."""
        fact = self._runtime_facts.get(name)
        if fact is None:
            fact = self._engine_facts.get(name)
        return fact

    @staticmethod
    def cache_key(name: str, params: Optional[Dict[str, Any]]) -> Tuple[str, str]:
        return name, json.dumps(params or {}, sort_keys=True, default=str)

    async def resolve(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Resolve a fact value, running its resolver at most once per params."""
        fact = self.get_fact(name)
        if fact is None:
            if self.allow_undefined_facts:
                self.logger.debug("Undefined fact treated as absent", fact=name)
                return UNDEFINED
            raise UndefinedFactError(name)

        if fact.is_constant():
            return fact.value

        key = self.cache_key(name, params)
        pending = self._cache.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._calculate(fact, params or {}))
            self._cache[key] = pending
        # Shielded so a cancelled requester does not cancel the shared resolution
        return await asyncio.shield(pending)

    async def resolve_path(self, name: str, params: Optional[Dict[str, Any]] = None,
                           path: Optional[str] = None) -> Any:
        """Resolve a fact and select a nested value from it."""
        value = await self.resolve(name, params)
        if value is UNDEFINED:
            return value
        return select_path(value, path)

    def cancel_pending(self) -> int:
        """Cancel resolutions still in flight once the evaluation is over."""
        tracked = list(self._cache.values()) + self._superseded
        pending = [task for task in tracked if not task.done()]
        for task in pending:
            task.cancel()
        return len(pending)

    async def _calculate(self, fact: Fact, params: Dict[str, Any]) -> Any:
        if self.metrics is not None:
            self.metrics.record_fact_resolution(fact.name)
        try:
            return await fact.calculate(params, self)
        except RuleEvaluationError:
            # Failures of dependent facts already carry their own context
            raise
        except Exception as exc:
            raise FactResolutionError(fact.name, exc) from exc
