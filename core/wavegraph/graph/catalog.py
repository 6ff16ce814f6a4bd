"""Capability catalog: resolves ids used by declarative graph definitions."""

import logging
from collections.abc import Callable
from typing import Any

from wavegraph.errors import GraphDefinitionError
from wavegraph.graph.edge import Predicate
from wavegraph.graph.join import MergeFunc
from wavegraph.graph.node import NodeProtocol, as_capability

logger = logging.getLogger(__name__)


class CapabilityCatalog:
    """
    Maps ids to node capabilities, routing predicates and join merges.

    Registration methods work directly or as decorators:

        catalog = CapabilityCatalog()

        @catalog.capability_fn("summarize")
        def summarize(message):
            ...

        catalog.register_predicate("approved", lambda m: m.payload["ok"])
    """

    def __init__(self) -> None:
        self._capabilities: dict[str, NodeProtocol] = {}
        self._predicates: dict[str, Predicate] = {}
        self._merges: dict[str, MergeFunc] = {}

    # --- registration -----------------------------------------------------

    def register_capability(self, capability_id: str, capability: Any) -> None:
        """Register a NodeProtocol or callable under ``capability_id``."""
        self._register(self._capabilities, "capability", capability_id, as_capability(capability))

    def register_predicate(self, predicate_id: str, predicate: Predicate) -> None:
        """Register a routing predicate under ``predicate_id``."""
        self._register(self._predicates, "predicate", predicate_id, predicate)

    def register_merge(self, merge_id: str, merge: MergeFunc) -> None:
        """Register a join merge function under ``merge_id``."""
        self._register(self._merges, "merge", merge_id, merge)

    def capability_fn(self, capability_id: str) -> Callable[[Callable], Callable]:
        """Decorator form of register_capability()."""

        def decorator(func: Callable) -> Callable:
            self.register_capability(capability_id, func)
            return func

        return decorator

    def predicate_fn(self, predicate_id: str) -> Callable[[Predicate], Predicate]:
        """Decorator form of register_predicate()."""

        def decorator(func: Predicate) -> Predicate:
            self.register_predicate(predicate_id, func)
            return func

        return decorator

    def merge_fn(self, merge_id: str) -> Callable[[MergeFunc], MergeFunc]:
        """Decorator form of register_merge()."""

        def decorator(func: MergeFunc) -> MergeFunc:
            self.register_merge(merge_id, func)
            return func

        return decorator

    @staticmethod
    def _register(table: dict[str, Any], kind: str, key: str, value: Any) -> None:
        if key in table:
            raise GraphDefinitionError(f"Duplicate {kind} id: '{key}'")
        table[key] = value
        logger.debug(f"Registered {kind} '{key}'")

    # --- lookup -----------------------------------------------------------

    def capability(self, capability_id: str) -> NodeProtocol:
        if capability_id not in self._capabilities:
            raise GraphDefinitionError(f"Unknown capability id: '{capability_id}'")
        return self._capabilities[capability_id]

    def predicate(self, predicate_id: str) -> Predicate:
        if predicate_id not in self._predicates:
            raise GraphDefinitionError(f"Unknown predicate id: '{predicate_id}'")
        return self._predicates[predicate_id]

    def merge(self, merge_id: str) -> MergeFunc:
        if merge_id not in self._merges:
            raise GraphDefinitionError(f"Unknown merge id: '{merge_id}'")
        return self._merges[merge_id]

    def missing_ids(
        self,
        capabilities: list[str],
        predicates: list[str],
        merges: list[str],
    ) -> list[str]:
        """Describe every id in the given lists that the catalog cannot resolve."""
        problems = []
        for kind, ids, table in (
            ("capability", capabilities, self._capabilities),
            ("predicate", predicates, self._predicates),
            ("merge", merges, self._merges),
        ):
            for key in ids:
                if key not in table:
                    problems.append(f"Unknown {kind} id: '{key}'")
        return problems
