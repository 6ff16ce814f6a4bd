"""
Join Barrier - multi-producer fan-in for "parallel experts -> aggregator".

A JoinSpec names a target node and the upstream sources it needs. Each join
edge hands its source's output to the barrier, which accumulates per wave:

    {group -> {wave -> {source -> Message}}}

When every required source has contributed for a wave, the barrier releases
the ordered mapping, the merge function turns it into one message, and the
executor enqueues (target, merged). Accumulations still partial when the run
ends are reported as IncompleteJoin instead of being dropped.
"""

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from wavegraph.graph.message import Message

logger = logging.getLogger(__name__)

MergeFunc = Callable[[Mapping[str, Message]], Any]


def default_merge(contributions: Mapping[str, Message]) -> dict[str, Any]:
    """Merge into a payload dict {source: payload}, in required_sources order."""
    return {source: message.payload for source, message in contributions.items()}


@dataclass(frozen=True)
class JoinSpec:
    """
    Join declaration: fire ``target`` once per wave when all sources arrived.

    Example:
        JoinSpec(
            group="experts",
            target="aggregate",
            required_sources=("finance", "legal"),
            merge=lambda parts: " | ".join(m.payload for m in parts.values()),
        )
    """

    group: str
    target: str
    required_sources: tuple[str, ...]
    merge: MergeFunc | None = None
    merge_id: str | None = None

    def __post_init__(self) -> None:
        sources = tuple(self.required_sources)
        if not sources:
            raise ValueError(f"Join '{self.group}' requires at least one source")
        if len(set(sources)) != len(sources):
            raise ValueError(f"Join '{self.group}' lists a source more than once: {sources}")
        object.__setattr__(self, "required_sources", sources)

    def merge_contributions(self, contributions: Mapping[str, Message]) -> Any:
        """Apply the merge function; a returned Message contributes only its payload."""
        merged = (self.merge or default_merge)(contributions)
        if isinstance(merged, Message):
            return merged.payload
        return merged


@dataclass(frozen=True)
class IncompleteJoin:
    """A join wave that never received all of its required sources."""

    group: str
    target: str
    wave: int
    missing_sources: tuple[str, ...]
    received_sources: tuple[str, ...] = field(default_factory=tuple)


class JoinBarrier:
    """
    Per-run accumulation state for all joins of a graph.

    Owned by a single run. Updates happen under a lock so parallel dispatch
    can never interleave two contributions to the same wave.
    """

    def __init__(self) -> None:
        self._pending: dict[str, dict[int, dict[str, Message]]] = {}
        self._specs: dict[str, JoinSpec] = {}
        self._lock = threading.Lock()

    def contribute(
        self,
        join: JoinSpec,
        source: str,
        message: Message,
    ) -> dict[str, Message] | None:
        """
        Record ``message`` as ``source``'s contribution to its wave.

        Returns:
            The complete mapping (ordered by required_sources) when this
            contribution completes the wave, else None.

        Raises:
            ValueError: if ``source`` is not one of the join's required sources.
        """
        if source not in join.required_sources:
            raise ValueError(
                f"'{source}' is not a required source of join '{join.group}' "
                f"(expects {list(join.required_sources)})"
            )

        with self._lock:
            self._specs[join.group] = join
            waves = self._pending.setdefault(join.group, {})
            collected = waves.setdefault(message.wave, {})

            if source in collected:
                logger.warning(
                    f"   ⚠ Join '{join.group}' wave {message.wave}: "
                    f"'{source}' contributed again, keeping the latest message",
                    extra={"group": join.group, "wave": message.wave},
                )
            collected[source] = message

            if set(collected) != set(join.required_sources):
                logger.debug(
                    f"   ⧗ Join '{join.group}' wave {message.wave}: "
                    f"{len(collected)}/{len(join.required_sources)} sources"
                )
                return None

            del waves[message.wave]
            if not waves:
                del self._pending[join.group]

        return {name: collected[name] for name in join.required_sources}

    def pending(self) -> list[IncompleteJoin]:
        """Partial accumulations, sorted by group then wave."""
        incomplete = []
        with self._lock:
            for group in sorted(self._pending):
                join = self._specs[group]
                for wave in sorted(self._pending[group]):
                    collected = self._pending[group][wave]
                    incomplete.append(
                        IncompleteJoin(
                            group=group,
                            target=join.target,
                            wave=wave,
                            missing_sources=tuple(
                                s for s in join.required_sources if s not in collected
                            ),
                            received_sources=tuple(
                                s for s in join.required_sources if s in collected
                            ),
                        )
                    )
        return incomplete
